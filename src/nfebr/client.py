"""High level client tying validation, message building and transport together.

Cada operação segue sempre a mesma ordem: validação local (sem I/O),
construção do XML, assinatura quando exigida, resolução do endpoint (com o
autorizador de contingência quando activo), chamada SOAP e classificação do
resultado. Uma rejeição da SEFAZ nunca é devolvida como sucesso.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime
from typing import Callable, Iterable, Protocol

from lxml import etree

from .access_key import AccessKeyBuilder, parse_access_key
from .config import ClientSettings
from .contingency import ContingencyManager, ContingencyMode, ContingencyState
from .endpoints import EndpointResolver, ServiceEndpoint, ServiceKind
from .errors import (
    AuthorityRejected,
    ConfigurationError,
    DuplicateEvent,
    SigningError,
    UnparsableResponse,
)
from .events import (
    Cancellation,
    CancellationBySubstitution,
    CorrectionLetter,
    DocumentLifecycle,
    FiscalEvent,
    NumberInvalidation,
    validate_cancellation,
    validate_correction_letter,
    validate_invalidation,
)
from .logging import ExchangeLog
from .messages import (
    NFE_NAMESPACE,
    EventMessageBuilder,
    build_authorization_batch,
    build_invalidation_request,
    build_protocol_query,
    build_receipt_query,
    build_registry_query,
    build_status_request,
)
from .regions import DocumentModel, EmissionType, Environment, Region
from .responses import (
    AuthorizationResult,
    BatchOutcome,
    EventOutcome,
    InvalidationResult,
    ProtocolQueryResult,
    RegistryResult,
    StatusResult,
    parse_authorization,
    parse_event_result,
    parse_invalidation,
    parse_protocol_query,
    parse_registry,
    parse_status,
)
from .soap import extract_result
from .status_codes import (
    AUTHORIZED_CODES,
    CANCELLED_CODES,
    DENIED_CODES,
    DUPLICATE_EVENT,
    EVENT_BATCH_PROCESSED,
    REGISTRY_FOUND_CODES,
    SERVICE_STATUS_CODES,
)
from .transport import Transport, TransportExchange

LOGGER = logging.getLogger("nfebr.client")

DSIG_NAMESPACE = "http://www.w3.org/2000/09/xmldsig#"
SIGNATURE_TAG = f"{{{DSIG_NAMESPACE}}}Signature"

# Services routed to the SVC authorizer while contingency is active.
CONTINGENCY_SERVICES = frozenset(
    {
        ServiceKind.STATUS,
        ServiceKind.AUTHORIZATION,
        ServiceKind.AUTHORIZATION_RESULT,
        ServiceKind.PROTOCOL_QUERY,
        ServiceKind.EVENT_RECEPTION,
        ServiceKind.INVALIDATION,
    }
)


class Signer(Protocol):
    """XML-DSig collaborator.

    ``element`` carries (directly or in a child) the ``Id`` attribute equal to
    ``reference_id``. The returned element must contain a
    ``ds:Signature``; the client checks this and raises
    :class:`SigningError` otherwise.
    """

    def sign(self, element: etree._Element, reference_id: str) -> etree._Element: ...


def has_signature(element: etree._Element) -> bool:
    if element.tag == SIGNATURE_TAG:
        return True
    return element.find(f".//{SIGNATURE_TAG}") is not None


def _rejected(code: int, message: str, result: object = None) -> AuthorityRejected:
    return AuthorityRejected(str(code), message, result=result)


class DocumentClient:
    """Operations on NF-e/NFC-e documents for one issuer.

    O cliente não guarda estado entre chamadas além da contingência
    partilhada, por isso pode ser usado por várias threads em simultâneo.
    """

    def __init__(
        self,
        *,
        region: Region | int | str,
        environment: Environment | int | str,
        issuer_id: str,
        model: DocumentModel | int | str = DocumentModel.NFE,
        transport: Transport | None = None,
        resolver: EndpointResolver | None = None,
        signer: Signer | None = None,
        contingency: ContingencyManager | None = None,
        deadline: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.region = Region.parse(region)
        self.environment = Environment.parse(environment)
        self.model = DocumentModel.parse(model)
        self.issuer_id = str(issuer_id).strip()
        self.transport = transport or Transport()
        self.resolver = resolver or EndpointResolver()
        self.signer = signer
        self.contingency = contingency or ContingencyManager(self.region)
        self.deadline = deadline
        self.builder = EventMessageBuilder(self.issuer_id, self.environment, clock=clock)

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        *,
        signer: Signer | None = None,
        exchange_log: ExchangeLog | None = None,
        require_certificate: bool = True,
    ) -> "DocumentClient":
        """Build a client from :class:`nfebr.config.ClientSettings`."""

        transport = Transport(
            settings.transport_config(require_certificate=require_certificate),
            exchange_log=exchange_log,
        )
        return cls(
            region=settings.require_region(),
            environment=settings.environment,
            issuer_id=settings.issuer_id,
            model=settings.model,
            transport=transport,
            signer=signer,
        )

    # -- helpers ---------------------------------------------------------------

    @property
    def last_exchange(self) -> TransportExchange | None:
        return self.transport.last_exchange

    @property
    def emission_type(self) -> EmissionType:
        if self.model not in self.resolver.table.contingency_models:
            return EmissionType.NORMAL
        return self.contingency.state.emission_type

    def new_access_key_builder(self) -> AccessKeyBuilder:
        """Builder pre-filled with issuer, model and the current emission type."""

        return (
            AccessKeyBuilder()
            .with_issuer(region=self.region, issuer_id=self.issuer_id, model=self.model)
            .with_emission_type(self.emission_type)
        )

    def endpoint(
        self,
        service: ServiceKind,
        *,
        region: Region | None = None,
        model: DocumentModel | None = None,
    ) -> ServiceEndpoint:
        model = model or self.model
        authorizer = None
        if service in CONTINGENCY_SERVICES and model in self.resolver.table.contingency_models:
            authorizer = self.contingency.state.authorizer
        return self.resolver.resolve(
            region or self.region, self.environment, model, service, authorizer=authorizer
        )

    def _call(
        self,
        service: ServiceKind,
        payload: etree._Element,
        result_tag: str,
        *,
        region: Region | None = None,
        model: DocumentModel | None = None,
        cancel_event: threading.Event | None = None,
    ) -> etree._Element:
        endpoint = self.endpoint(service, region=region, model=model)
        LOGGER.info("A chamar %s em %s (%s)", service.value, endpoint.authorizer, endpoint.url)
        raw = self.transport.call(endpoint, payload, deadline=self.deadline, cancel_event=cancel_event)
        return extract_result(raw, result_tag)

    def _sign(self, element: etree._Element, reference_id: str) -> etree._Element:
        if self.signer is None:
            raise ConfigurationError("Nenhum assinador configurado para este pedido", setting="signer")
        signed = self.signer.sign(element, reference_id)
        if signed is None or not has_signature(signed):
            raise SigningError(
                f"O assinador não produziu ds:Signature para {reference_id}",
                reference_id=reference_id,
            )
        return signed

    # -- service status and queries ---------------------------------------------

    def status(self, *, cancel_event: threading.Event | None = None) -> StatusResult:
        """``consStatServ``: is the authorizer (or SVC in contingency) online?"""

        payload = build_status_request(self.environment, self.region)
        result = parse_status(self._call(ServiceKind.STATUS, payload, "retConsStatServ", cancel_event=cancel_event))
        if result.status_code not in SERVICE_STATUS_CODES:
            raise _rejected(result.status_code, result.status_message, result)
        return result

    def query_key(self, access_key: str, *, cancel_event: threading.Event | None = None) -> ProtocolQueryResult:
        """``consSitNFe``: current situation of a document by access key."""

        key = parse_access_key(access_key)
        payload = build_protocol_query(self.environment, key.digits)
        element = self._call(
            ServiceKind.PROTOCOL_QUERY,
            payload,
            "retConsSitNFe",
            region=key.issuing_region,
            model=key.document_model,
            cancel_event=cancel_event,
        )
        result = parse_protocol_query(element)
        if result.status_code not in AUTHORIZED_CODES | CANCELLED_CODES | DENIED_CODES:
            raise _rejected(result.status_code, result.status_message, result)
        return result

    def query_registry(
        self,
        *,
        cnpj: str | None = None,
        cpf: str | None = None,
        state_registration: str | None = None,
        region: Region | int | str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RegistryResult:
        """``ConsCad``: taxpayer registry lookup (NF-e only)."""

        target = Region.parse(region) if region is not None else self.region
        payload = build_registry_query(target, cnpj=cnpj, cpf=cpf, state_registration=state_registration)
        element = self._call(
            ServiceKind.REGISTRY_QUERY, payload, "retConsCad", region=target, cancel_event=cancel_event
        )
        result = parse_registry(element)
        if result.status_code not in REGISTRY_FOUND_CODES:
            raise _rejected(result.status_code, result.status_message, result)
        return result

    # -- authorization --------------------------------------------------------

    def _checked_batch(self, result: AuthorizationResult) -> AuthorizationResult:
        if result.outcome is BatchOutcome.REJECTED:
            raise _rejected(result.status_code, result.status_message, result)
        if result.outcome is BatchOutcome.PROCESSING:
            LOGGER.info("Lote em processamento; consultar recibo %s", result.receipt)
        return result

    def authorize(
        self,
        documents: Iterable[etree._Element | bytes | str],
        *,
        batch_id: str | None = None,
        synchronous: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> AuthorizationResult:
        """Submit already signed documents in an ``enviNFe`` batch.

        ``PROCESSING`` results carry the receipt to poll with
        :meth:`query_receipt`. After a timeout the batch may still have been
        received: query by receipt or key before resubmitting.
        """

        payload = build_authorization_batch(documents, batch_id, synchronous=synchronous)
        for document in payload:
            if etree.QName(document).localname == "NFe" and not has_signature(document):
                raise SigningError("NF-e sem assinatura digital no lote")
        element = self._call(ServiceKind.AUTHORIZATION, payload, "retEnviNFe", cancel_event=cancel_event)
        return self._checked_batch(parse_authorization(element))

    def query_receipt(self, receipt: str, *, cancel_event: threading.Event | None = None) -> AuthorizationResult:
        payload = build_receipt_query(self.environment, receipt)
        element = self._call(
            ServiceKind.AUTHORIZATION_RESULT, payload, "retConsReciNFe", cancel_event=cancel_event
        )
        return self._checked_batch(parse_authorization(element))

    # -- events ----------------------------------------------------------------

    def _send_event(
        self, event: FiscalEvent, batch_id: str | None, cancel_event: threading.Event | None
    ) -> EventOutcome:
        key = parse_access_key(event.access_key)
        evento = self.builder.build_event(event)
        signed = self._sign(evento, self.builder.event_id(event))
        payload = self.builder.wrap([signed], batch_id or event.batch_id)

        element = self._call(
            ServiceKind.EVENT_RECEPTION,
            payload,
            "retEnvEvento",
            region=key.issuing_region,
            model=key.document_model,
            cancel_event=cancel_event,
        )
        result = parse_event_result(element)
        if result.status_code != EVENT_BATCH_PROCESSED:
            raise _rejected(result.status_code, result.status_message, result)
        if not result.events:
            raise UnparsableResponse("retEnvEvento sem retEvento", batch_id=result.batch_id)

        outcome = result.events[0]
        if outcome.status_code == DUPLICATE_EVENT:
            raise DuplicateEvent(
                f"Evento {event.event_type.code} seq. {event.sequence} já registado para {key.digits}",
                status_code=str(outcome.status_code),
                status_message=outcome.status_message,
            )
        if not result.all_registered:
            raise _rejected(outcome.status_code, outcome.status_message, outcome)
        LOGGER.info(
            "Evento %s registado para %s (protocolo %s)", event.event_type.code, key.digits, outcome.protocol
        )
        return outcome

    def send_correction(
        self,
        letter: CorrectionLetter,
        *,
        lifecycle: DocumentLifecycle | None = None,
        last_sequence: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> EventOutcome:
        """Send a CC-e.

        Sem ``lifecycle`` nem ``last_sequence`` apenas o intervalo 1..20 da
        sequência é verificado localmente; a SEFAZ continua a rejeitar
        duplicados com 573.
        """

        if lifecycle is not None:
            letter = lifecycle.check_correction(letter)
        else:
            previous = letter.sequence - 1 if last_sequence is None else last_sequence
            letter = validate_correction_letter(letter, last_sequence=previous)
        outcome = self._send_event(letter, letter.batch_id, cancel_event)
        if lifecycle is not None:
            lifecycle.record_correction(letter)
        return outcome

    def cancel(
        self,
        cancellation: Cancellation,
        *,
        lifecycle: DocumentLifecycle | None = None,
        now: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ) -> EventOutcome:
        """Send a cancellation (110111) or, for the subclass, a substitution (110112)."""

        if lifecycle is not None:
            cancellation = lifecycle.check_cancellation(cancellation, now=now)
        else:
            cancellation = validate_cancellation(cancellation, now=now)
        outcome = self._send_event(cancellation, cancellation.batch_id, cancel_event)
        if lifecycle is not None:
            lifecycle.record_cancellation(cancellation)
        return outcome

    def cancel_by_substitution(
        self,
        cancellation: CancellationBySubstitution,
        *,
        lifecycle: DocumentLifecycle | None = None,
        now: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ) -> EventOutcome:
        if not isinstance(cancellation, CancellationBySubstitution):
            raise TypeError("cancel_by_substitution requires a CancellationBySubstitution")
        return self.cancel(cancellation, lifecycle=lifecycle, now=now, cancel_event=cancel_event)

    def invalidate(
        self,
        request: NumberInvalidation,
        *,
        today: date | None = None,
        cancel_event: threading.Event | None = None,
    ) -> InvalidationResult:
        """``inutNFe``: invalidate an unused number range of a series."""

        request = validate_invalidation(request, today=today)
        payload = build_invalidation_request(request, self.environment)
        info = payload.find(f"{{{NFE_NAMESPACE}}}infInut")
        signed = self._sign(payload, info.get("Id"))

        element = self._call(
            ServiceKind.INVALIDATION,
            signed,
            "retInutNFe",
            region=Region.parse(request.region),
            model=DocumentModel.parse(request.model),
            cancel_event=cancel_event,
        )
        result = parse_invalidation(element)
        if not result.homologated:
            raise _rejected(result.status_code, result.status_message, result)
        return result

    # -- contingency ------------------------------------------------------------

    def activate_contingency(self, reason: str, mode: ContingencyMode | str | None = None) -> ContingencyState:
        return self.contingency.activate(reason, mode, region=self.region)

    def deactivate_contingency(self) -> ContingencyState:
        return self.contingency.deactivate()


__all__ = [
    "DSIG_NAMESPACE",
    "SIGNATURE_TAG",
    "CONTINGENCY_SERVICES",
    "Signer",
    "has_signature",
    "DocumentClient",
]
