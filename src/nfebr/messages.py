"""XML payloads sent to the authority, built with :mod:`lxml`.

Os construtores recebem valores já validados por :mod:`nfebr.events` e apenas
os dispõem na ordem exigida pelos schemas. Nenhuma função deste módulo faz
I/O; a assinatura digital fica a cargo do chamador.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Iterable, Sequence

from lxml import etree

from .access_key import parse_access_key
from .errors import InvalidField
from .events import (
    CORRECTION_MAX_LENGTH,
    EVENT_VERSION,
    JUSTIFICATION_MAX_LENGTH,
    Cancellation,
    CancellationBySubstitution,
    CorrectionLetter,
    FiscalEvent,
    NumberInvalidation,
    invalidation_request_id,
    sanitize_text,
)
from .regions import BRASILIA, DocumentModel, Environment, Region

NFE_NAMESPACE = "http://www.portalfiscal.inf.br/nfe"
SERVICE_VERSION = "4.00"
REGISTRY_VERSION = "2.00"

MAX_EVENTS_PER_BATCH = 20
MAX_DOCUMENTS_PER_BATCH = 50
MAX_BATCH_ID_LENGTH = 15

# tpAutor for events issued by the document's issuer.
ISSUER_AUTHOR_TYPE = "1"


def format_timestamp(moment: datetime | None = None) -> str:
    """Return ``AAAA-MM-DDThh:mm:ss±hh:mm``; naive values are taken as Brasília time."""

    if moment is None:
        moment = datetime.now(BRASILIA)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=BRASILIA)
    return moment.replace(microsecond=0).isoformat()


def default_batch_id() -> str:
    return str(int(time.time()))


def _qualified(tag: str) -> str:
    return f"{{{NFE_NAMESPACE}}}{tag}"


def _root(tag: str, **attributes: str) -> etree._Element:
    element = etree.Element(_qualified(tag), nsmap={None: NFE_NAMESPACE})
    for name, value in attributes.items():
        element.set(name, value)
    return element


def _sub(parent: etree._Element, tag: str, text: object | None = None, **attributes: str) -> etree._Element:
    element = etree.SubElement(parent, _qualified(tag))
    for name, value in attributes.items():
        element.set(name, value)
    if text is not None:
        element.text = str(text)
    return element


def _issuer(parent: etree._Element, issuer_id: str) -> None:
    digits = str(issuer_id).strip()
    if len(digits) == 14:
        _sub(parent, "CNPJ", digits)
    elif len(digits) == 11:
        _sub(parent, "CPF", digits)
    else:
        raise InvalidField("issuer_id", f"CNPJ/CPF do emitente inválido: {issuer_id!r}")


def _batch_id(value: str | None) -> str:
    batch_id = value or default_batch_id()
    if not (batch_id.isascii() and batch_id.isdigit()) or len(batch_id) > MAX_BATCH_ID_LENGTH:
        raise InvalidField("batch_id", f"idLote deve ter até {MAX_BATCH_ID_LENGTH} dígitos: {batch_id!r}")
    return batch_id


def serialize(element: etree._Element) -> str:
    """Serialise ``element`` without XML declaration, as embedded in SOAP bodies."""

    return etree.tostring(element, encoding="unicode")


class EventMessageBuilder:
    """Build ``envEvento`` payloads for one issuer and environment."""

    def __init__(
        self,
        issuer_id: str,
        environment: Environment | int | str,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.issuer_id = str(issuer_id).strip()
        self.environment = Environment.parse(environment)
        self._clock = clock or (lambda: datetime.now(BRASILIA))

    @staticmethod
    def event_id(event: FiscalEvent) -> str:
        """``ID`` + tpEvento + chave + nSeqEvento (2 dígitos)."""

        return f"ID{event.event_type.code}{event.access_key}{event.sequence:02d}"

    def build_event(self, event: FiscalEvent) -> etree._Element:
        """Return a single unsigned ``evento`` element."""

        key = parse_access_key(event.access_key)
        event_type = event.event_type

        evento = _root("evento", versao=EVENT_VERSION)
        info = _sub(evento, "infEvento", Id=self.event_id(event))
        _sub(info, "cOrgao", key.region)
        _sub(info, "tpAmb", int(self.environment))
        _issuer(info, self.issuer_id)
        _sub(info, "chNFe", key.digits)
        _sub(info, "dhEvento", format_timestamp(event.timestamp or self._clock()))
        _sub(info, "tpEvento", event_type.code)
        _sub(info, "nSeqEvento", event.sequence)
        _sub(info, "verEvento", event_type.version)

        detail = _sub(info, "detEvento", versao=event_type.version)
        _sub(detail, "descEvento", event_type.description)
        if isinstance(event, CorrectionLetter):
            _sub(detail, "xCorrecao", sanitize_text(event.correction, CORRECTION_MAX_LENGTH))
            _sub(detail, "xCondUso", event.usage_conditions)
        elif isinstance(event, CancellationBySubstitution):
            author = Region.parse(event.author_region) if event.author_region else Region.parse(key.region)
            _sub(detail, "cOrgaoAutor", author.code)
            _sub(detail, "tpAutor", ISSUER_AUTHOR_TYPE)
            _sub(detail, "verAplic", event.application_version)
            _sub(detail, "nProt", event.protocol)
            _sub(detail, "xJust", sanitize_text(event.justification, JUSTIFICATION_MAX_LENGTH))
            _sub(detail, "chNFeRef", event.replacement_key)
        elif isinstance(event, Cancellation):
            _sub(detail, "nProt", event.protocol)
            _sub(detail, "xJust", sanitize_text(event.justification, JUSTIFICATION_MAX_LENGTH))
        else:  # pragma: no cover - guarded by the type union
            raise InvalidField("event", f"Tipo de evento não suportado: {type(event).__name__}")
        return evento

    def wrap(self, events: Sequence[etree._Element], batch_id: str | None = None) -> etree._Element:
        """Wrap already built (and usually signed) ``evento`` elements in ``envEvento``."""

        if not 1 <= len(events) <= MAX_EVENTS_PER_BATCH:
            raise InvalidField(
                "events",
                f"Um lote de eventos tem de ter entre 1 e {MAX_EVENTS_PER_BATCH} eventos",
                count=len(events),
            )
        envelope = _root("envEvento", versao=EVENT_VERSION)
        _sub(envelope, "idLote", _batch_id(batch_id))
        for evento in events:
            envelope.append(evento)
        return envelope

    def build(self, event: FiscalEvent, batch_id: str | None = None) -> etree._Element:
        """Return ``envEvento`` containing a single unsigned event."""

        return self.wrap([self.build_event(event)], batch_id or event.batch_id)


def build_status_request(environment: Environment | int | str, region: Region | int | str) -> etree._Element:
    root = _root("consStatServ", versao=SERVICE_VERSION)
    _sub(root, "tpAmb", int(Environment.parse(environment)))
    _sub(root, "cUF", Region.parse(region).code)
    _sub(root, "xServ", "STATUS")
    return root


def build_protocol_query(environment: Environment | int | str, access_key: str) -> etree._Element:
    root = _root("consSitNFe", versao=SERVICE_VERSION)
    _sub(root, "tpAmb", int(Environment.parse(environment)))
    _sub(root, "xServ", "CONSULTAR")
    _sub(root, "chNFe", parse_access_key(access_key).digits)
    return root


def build_receipt_query(environment: Environment | int | str, receipt: str) -> etree._Element:
    number = str(receipt or "").strip()
    if not (number.isascii() and number.isdigit()) or len(number) != 15:
        raise InvalidField("receipt", f"Número de recibo inválido: {receipt!r}")
    root = _root("consReciNFe", versao=SERVICE_VERSION)
    _sub(root, "tpAmb", int(Environment.parse(environment)))
    _sub(root, "nRec", number)
    return root


def _as_document(document: etree._Element | bytes | str) -> etree._Element:
    if isinstance(document, etree._Element):
        element = document
    else:
        raw = document.encode("utf-8") if isinstance(document, str) else document
        try:
            element = etree.fromstring(raw)
        except etree.XMLSyntaxError as exc:
            raise InvalidField("documents", f"XML da NF-e inválido: {exc}") from exc
    if etree.QName(element).localname != "NFe":
        raise InvalidField("documents", f"Elemento raiz inesperado: {element.tag}")
    return element


def build_authorization_batch(
    documents: Iterable[etree._Element | bytes | str],
    batch_id: str | None = None,
    *,
    synchronous: bool = False,
) -> etree._Element:
    """Return ``enviNFe`` carrying already signed ``NFe`` documents."""

    elements = [_as_document(document) for document in documents]
    if not 1 <= len(elements) <= MAX_DOCUMENTS_PER_BATCH:
        raise InvalidField(
            "documents",
            f"Um lote tem de ter entre 1 e {MAX_DOCUMENTS_PER_BATCH} documentos",
            count=len(elements),
        )
    if synchronous and len(elements) != 1:
        raise InvalidField("documents", "Processamento síncrono aceita apenas um documento por lote")

    root = _root("enviNFe", versao=SERVICE_VERSION)
    _sub(root, "idLote", _batch_id(batch_id))
    _sub(root, "indSinc", "1" if synchronous else "0")
    for element in elements:
        root.append(element)
    return root


def build_invalidation_request(
    request: NumberInvalidation, environment: Environment | int | str
) -> etree._Element:
    """Return an unsigned ``inutNFe`` for a validated :class:`NumberInvalidation`."""

    region = Region.parse(request.region)
    model = DocumentModel.parse(request.model)
    year = request.year if request.year is not None else datetime.now(BRASILIA).year
    request_id = invalidation_request_id(
        region, year, request.issuer_id, model, request.series, request.start, request.end
    )

    root = _root("inutNFe", versao=SERVICE_VERSION)
    info = _sub(root, "infInut", Id=request_id)
    _sub(info, "tpAmb", int(Environment.parse(environment)))
    _sub(info, "xServ", "INUTILIZAR")
    _sub(info, "cUF", region.code)
    _sub(info, "ano", f"{year % 100:02d}")
    _issuer(info, request.issuer_id)
    _sub(info, "mod", model.code)
    _sub(info, "serie", request.series)
    _sub(info, "nNFIni", request.start)
    _sub(info, "nNFFin", request.end)
    _sub(info, "xJust", sanitize_text(request.justification, JUSTIFICATION_MAX_LENGTH))
    return root


def build_registry_query(
    region: Region | int | str,
    *,
    cnpj: str | None = None,
    cpf: str | None = None,
    state_registration: str | None = None,
) -> etree._Element:
    """Return ``ConsCad`` querying the taxpayer registry by exactly one identifier."""

    given = [(tag, value) for tag, value in (("CNPJ", cnpj), ("CPF", cpf), ("IE", state_registration)) if value]
    if len(given) != 1:
        raise InvalidField("identifier", "Indique exactamente um de CNPJ, CPF ou IE")

    root = _root("ConsCad", versao=REGISTRY_VERSION)
    info = _sub(root, "infCons")
    _sub(info, "xServ", "CONS-CAD")
    _sub(info, "UF", Region.parse(region).name)
    tag, value = given[0]
    _sub(info, tag, str(value).strip())
    return root


__all__ = [
    "NFE_NAMESPACE",
    "SERVICE_VERSION",
    "REGISTRY_VERSION",
    "BRASILIA",
    "MAX_EVENTS_PER_BATCH",
    "MAX_DOCUMENTS_PER_BATCH",
    "format_timestamp",
    "default_batch_id",
    "serialize",
    "EventMessageBuilder",
    "build_status_request",
    "build_protocol_query",
    "build_receipt_query",
    "build_authorization_batch",
    "build_invalidation_request",
    "build_registry_query",
]
