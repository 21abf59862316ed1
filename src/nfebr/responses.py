"""Structured results parsed from the authority's result elements.

Every ``parse_*`` function receives the element returned by
:func:`nfebr.soap.extract_result`, so the same XML yields the same result
whether it arrived wrapped in ``nfeResultMsg`` or directly in ``soap:Body``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator

from lxml import etree

from .errors import UnparsableResponse
from .status_codes import (
    AUTHORIZED_CODES,
    BATCH_PENDING_CODES,
    CANCELLED_CODES,
    DENIED_CODES,
    EVENT_REGISTERED_CODES,
    StatusCode,
)

LOGGER = logging.getLogger("nfebr.responses")

SERVICE_ONLINE = 107
BATCH_PROCESSED = 104
INVALIDATION_HOMOLOGATED = 102


def _localname(element: etree._Element) -> str:
    return etree.QName(element).localname


def _iter_named(element: etree._Element, name: str) -> Iterator[etree._Element]:
    for child in element.iter():
        if isinstance(child.tag, str) and _localname(child) == name:
            yield child


def _find(element: etree._Element, name: str) -> etree._Element | None:
    return next(_iter_named(element, name), None)


def _child(element: etree._Element, name: str) -> etree._Element | None:
    for child in element:
        if isinstance(child.tag, str) and _localname(child) == name:
            return child
    return None


def _text(element: etree._Element | None, name: str, default: str = "") -> str:
    if element is None:
        return default
    child = _child(element, name)
    if child is None or child.text is None:
        return default
    return child.text.strip()


def _int(element: etree._Element | None, name: str) -> int | None:
    text = _text(element, name)
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        LOGGER.debug("Valor não numérico em %s: %r", name, text)
        return None


def _timestamp(element: etree._Element | None, name: str) -> datetime | None:
    text = _text(element, name)
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        LOGGER.debug("Data inválida em %s: %r", name, text)
        return None


def _status(element: etree._Element) -> tuple[int, str]:
    code = _int(element, "cStat")
    if code is None:
        raise UnparsableResponse(
            f"Elemento {_localname(element)} sem cStat numérico",
            element=_localname(element),
        )
    return code, _text(element, "xMotivo")


# -- Status -------------------------------------------------------------------


@dataclass(frozen=True)
class StatusResult:
    status_code: int
    status_message: str
    environment: int | None = None
    application_version: str = ""
    region: str = ""
    received_at: datetime | None = None
    average_time: int | None = None
    observation: str = ""

    @property
    def online(self) -> bool:
        return self.status_code == SERVICE_ONLINE

    @property
    def status(self) -> StatusCode:
        return StatusCode.from_code(self.status_code)


def parse_status(element: etree._Element) -> StatusResult:
    code, message = _status(element)
    return StatusResult(
        status_code=code,
        status_message=message,
        environment=_int(element, "tpAmb"),
        application_version=_text(element, "verAplic"),
        region=_text(element, "cUF"),
        received_at=_timestamp(element, "dhRecbto"),
        average_time=_int(element, "tMed"),
        observation=_text(element, "xObs"),
    )


# -- Authorization --------------------------------------------------------------


@dataclass(frozen=True)
class ProtocolInfo:
    """``protNFe/infProt``: the authority's verdict on one document."""

    access_key: str
    status_code: int
    status_message: str
    protocol: str = ""
    received_at: datetime | None = None
    digest: str = ""

    @property
    def authorized(self) -> bool:
        return self.status_code in AUTHORIZED_CODES

    @property
    def denied(self) -> bool:
        return self.status_code in DENIED_CODES


def parse_protocol(element: etree._Element) -> ProtocolInfo:
    info = _find(element, "infProt")
    if info is None:
        raise UnparsableResponse("protNFe sem infProt")
    code, message = _status(info)
    return ProtocolInfo(
        access_key=_text(info, "chNFe"),
        status_code=code,
        status_message=message,
        protocol=_text(info, "nProt"),
        received_at=_timestamp(info, "dhRecbto"),
        digest=_text(info, "digVal"),
    )


class BatchOutcome(Enum):
    """Where a submitted batch stands.

    ``PROCESSING`` means the batch was received but item outcomes are not
    known yet: re-query by receipt, never resubmit.
    """

    PROCESSING = "processing"
    PROCESSED = "processed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AuthorizationResult:
    status_code: int
    status_message: str
    outcome: BatchOutcome
    receipt: str = ""
    average_time: int | None = None
    received_at: datetime | None = None
    protocols: tuple[ProtocolInfo, ...] = ()

    def protocol_for(self, access_key: str) -> ProtocolInfo | None:
        return next((item for item in self.protocols if item.access_key == access_key), None)

    @property
    def authorized_keys(self) -> list[str]:
        return [item.access_key for item in self.protocols if item.authorized]


def parse_authorization(element: etree._Element) -> AuthorizationResult:
    """Parse ``retEnviNFe`` or ``retConsReciNFe``."""

    code, message = _status(element)
    info = _child(element, "infRec")
    receipt = _text(info, "nRec") or _text(element, "nRec")
    protocols = tuple(parse_protocol(item) for item in _iter_named(element, "protNFe"))

    if code in BATCH_PENDING_CODES:
        outcome = BatchOutcome.PROCESSING
    elif code == BATCH_PROCESSED or protocols:
        outcome = BatchOutcome.PROCESSED
    else:
        outcome = BatchOutcome.REJECTED

    return AuthorizationResult(
        status_code=code,
        status_message=message,
        outcome=outcome,
        receipt=receipt,
        average_time=_int(info, "tMed") or _int(element, "tMed"),
        received_at=_timestamp(element, "dhRecbto"),
        protocols=protocols,
    )


# -- Events ---------------------------------------------------------------------


@dataclass(frozen=True)
class EventOutcome:
    """``retEvento/infEvento`` for one event of a batch."""

    status_code: int
    status_message: str
    access_key: str = ""
    event_type: str = ""
    sequence: int | None = None
    protocol: str = ""
    registered_at: datetime | None = None

    @property
    def registered(self) -> bool:
        return self.status_code in EVENT_REGISTERED_CODES


def parse_event_outcome(element: etree._Element) -> EventOutcome:
    info = _child(element, "infEvento")
    if info is None:
        info = element
    code, message = _status(info)
    return EventOutcome(
        status_code=code,
        status_message=message,
        access_key=_text(info, "chNFe"),
        event_type=_text(info, "tpEvento"),
        sequence=_int(info, "nSeqEvento"),
        protocol=_text(info, "nProt"),
        registered_at=_timestamp(info, "dhRegEvento"),
    )


@dataclass(frozen=True)
class EventResult:
    status_code: int
    status_message: str
    batch_id: str = ""
    events: tuple[EventOutcome, ...] = ()

    @property
    def all_registered(self) -> bool:
        return bool(self.events) and all(item.registered for item in self.events)


def parse_event_result(element: etree._Element) -> EventResult:
    """Parse ``retEnvEvento``."""

    code, message = _status(element)
    return EventResult(
        status_code=code,
        status_message=message,
        batch_id=_text(element, "idLote"),
        events=tuple(parse_event_outcome(item) for item in _iter_named(element, "retEvento")),
    )


# -- Protocol query -------------------------------------------------------------


@dataclass(frozen=True)
class ProtocolQueryResult:
    status_code: int
    status_message: str
    access_key: str = ""
    protocol: ProtocolInfo | None = None
    events: tuple[EventOutcome, ...] = ()

    @property
    def authorized(self) -> bool:
        return self.status_code in AUTHORIZED_CODES

    @property
    def cancelled(self) -> bool:
        return self.status_code in CANCELLED_CODES

    @property
    def denied(self) -> bool:
        return self.status_code in DENIED_CODES

    @property
    def last_correction_sequence(self) -> int:
        sequences = [
            item.sequence or 0
            for item in self.events
            if item.event_type == "110110" and item.registered
        ]
        return max(sequences, default=0)


def parse_protocol_query(element: etree._Element) -> ProtocolQueryResult:
    """Parse ``retConsSitNFe``."""

    code, message = _status(element)
    protocol_element = _child(element, "protNFe")
    return ProtocolQueryResult(
        status_code=code,
        status_message=message,
        access_key=_text(element, "chNFe"),
        protocol=parse_protocol(protocol_element) if protocol_element is not None else None,
        events=tuple(parse_event_outcome(item) for item in _iter_named(element, "retEvento")),
    )


# -- Invalidation ---------------------------------------------------------------


@dataclass(frozen=True)
class InvalidationResult:
    status_code: int
    status_message: str
    protocol: str = ""
    received_at: datetime | None = None
    series: int | None = None
    start: int | None = None
    end: int | None = None

    @property
    def homologated(self) -> bool:
        return self.status_code == INVALIDATION_HOMOLOGATED


def parse_invalidation(element: etree._Element) -> InvalidationResult:
    """Parse ``retInutNFe``."""

    info = _child(element, "infInut")
    if info is None:
        raise UnparsableResponse("retInutNFe sem infInut")
    code, message = _status(info)
    return InvalidationResult(
        status_code=code,
        status_message=message,
        protocol=_text(info, "nProt"),
        received_at=_timestamp(info, "dhRecbto"),
        series=_int(info, "serie"),
        start=_int(info, "nNFIni"),
        end=_int(info, "nNFFin"),
    )


# -- Registry -------------------------------------------------------------------


@dataclass(frozen=True)
class RegistryEntry:
    state_registration: str = ""
    cnpj: str = ""
    cpf: str = ""
    region: str = ""
    situation: str = ""
    name: str = ""

    @property
    def active(self) -> bool:
        return self.situation == "1"


@dataclass(frozen=True)
class RegistryResult:
    status_code: int
    status_message: str
    region: str = ""
    entries: tuple[RegistryEntry, ...] = field(default_factory=tuple)


def parse_registry(element: etree._Element) -> RegistryResult:
    """Parse ``retConsCad``."""

    info = _child(element, "infCons")
    if info is None:
        raise UnparsableResponse("retConsCad sem infCons")
    code, message = _status(info)
    entries = tuple(
        RegistryEntry(
            state_registration=_text(item, "IE"),
            cnpj=_text(item, "CNPJ"),
            cpf=_text(item, "CPF"),
            region=_text(item, "UF"),
            situation=_text(item, "cSit"),
            name=_text(item, "xNome"),
        )
        for item in _iter_named(info, "infCad")
    )
    return RegistryResult(status_code=code, status_message=message, region=_text(info, "UF"), entries=entries)


__all__ = [
    "SERVICE_ONLINE",
    "BATCH_PROCESSED",
    "INVALIDATION_HOMOLOGATED",
    "StatusResult",
    "ProtocolInfo",
    "BatchOutcome",
    "AuthorizationResult",
    "EventOutcome",
    "EventResult",
    "ProtocolQueryResult",
    "InvalidationResult",
    "RegistryEntry",
    "RegistryResult",
    "parse_status",
    "parse_protocol",
    "parse_authorization",
    "parse_event_outcome",
    "parse_event_result",
    "parse_protocol_query",
    "parse_invalidation",
    "parse_registry",
]
