"""Pre-flight rules for fiscal events issued after authorization.

Este módulo não faz I/O. Todas as validações correm antes de qualquer pedido
à SEFAZ e devolvem uma cópia normalizada do evento (texto saneado, chave
validada) pronta para :mod:`nfebr.messages`.

Estados de um documento::

    AUTHORIZED -> CORRECTED* | CANCELLED | INVALIDATED

``CANCELLED`` e ``INVALIDATED`` são terminais; ``CORRECTED`` aceita novas
cartas de correcção.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from .access_key import parse_access_key, validate_access_key
from .errors import (
    DeadlineExceeded,
    DuplicateEvent,
    InvalidDocumentState,
    InvalidField,
    InvalidRange,
    JustificationTooLong,
    JustificationTooShort,
    SequenceViolation,
)
from .regions import BRASILIA, DocumentModel, Region

LOGGER = logging.getLogger("nfebr.events")

EVENT_VERSION = "1.00"

CORRECTION_MIN_SEQUENCE = 1
CORRECTION_MAX_SEQUENCE = 20
CORRECTION_MIN_LENGTH = 15
CORRECTION_MAX_LENGTH = 1000

JUSTIFICATION_MIN_LENGTH = 15
JUSTIFICATION_MAX_LENGTH = 255

CANCELLATION_WINDOW = timedelta(hours=24)

INVALIDATION_MAX_SERIES = 999
INVALIDATION_MAX_NUMBER = 999_999_999

# Content pattern for xCorrecao published with the event schema.
CORRECTION_TEXT_PATTERN = re.compile(r"^[!-ÿ][ -ÿ]*[!-ÿ]$|^[!-ÿ]$")

USAGE_CONDITIONS = (
    "A Carta de Correção é disciplinada pelo § 1º-A do art. 7º do Convênio S/N, "
    "de 15 de dezembro de 1970 e pode ser utilizada para regularização de erro "
    "ocorrido na emissão de documento fiscal, desde que o erro não esteja "
    "relacionado com: I - as variáveis que determinam o valor do imposto tais "
    "como: base de cálculo, alíquota, diferença de preço, quantidade, valor da "
    "operação ou da prestação; II - a correção de dados cadastrais que implique "
    "mudança do remetente ou do destinatário; III - a data de emissão ou de saída."
)

_XML_ILLEGAL = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\ufffe\uffff]")
_WHITESPACE = re.compile(r"\s+")


class EventType(Enum):
    """Event codes (``tpEvento``) and their ``descEvento``."""

    CORRECTION_LETTER = ("110110", "Carta de Correção")
    CANCELLATION = ("110111", "Cancelamento")
    CANCELLATION_BY_SUBSTITUTION = ("110112", "Cancelamento por substituicao")

    def __init__(self, code: str, description: str) -> None:
        self.code = code
        self.description = description

    @property
    def version(self) -> str:
        return EVENT_VERSION


class DocumentState(Enum):
    AUTHORIZED = "authorized"
    CORRECTED = "authorized_with_corrections"
    CANCELLED = "cancelled"
    INVALIDATED = "invalidated"


def sanitize_text(text: Any, max_length: int | None = None) -> str:
    """Collapse whitespace and drop characters that are illegal in XML 1.0.

    Quebras de linha e tabulações passam a espaço. ``max_length`` corta o
    resultado; as validações chamam esta função sem limite para que texto
    demasiado longo seja reportado e não truncado em silêncio.
    """

    if text is None:
        return ""
    cleaned = _XML_ILLEGAL.sub("", str(text))
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    if max_length is not None and len(cleaned) > max_length:
        cleaned = cleaned[:max_length].rstrip()
    return cleaned


def validate_text_length(
    text: Any,
    *,
    field_name: str = "justification",
    minimum: int = JUSTIFICATION_MIN_LENGTH,
    maximum: int = JUSTIFICATION_MAX_LENGTH,
) -> str:
    """Return the sanitised text once its length lies in ``[minimum, maximum]``."""

    cleaned = sanitize_text(text)
    if len(cleaned) < minimum:
        raise JustificationTooShort(
            f"'{field_name}' deve ter pelo menos {minimum} caracteres, tem {len(cleaned)}",
            field=field_name,
            length=len(cleaned),
            minimum=minimum,
        )
    if len(cleaned) > maximum:
        raise JustificationTooLong(
            f"'{field_name}' não pode exceder {maximum} caracteres, tem {len(cleaned)}",
            field=field_name,
            length=len(cleaned),
            maximum=maximum,
        )
    return cleaned


def _require_digits(name: str, value: Any, widths: tuple[int, ...]) -> str:
    text = str(value or "").strip()
    if not (text.isascii() and text.isdigit()) or len(text) not in widths:
        expected = " ou ".join(str(width) for width in widths)
        raise InvalidField(name, f"'{name}' deve ter {expected} dígitos: {text!r}", value=text)
    return text


# -- Event values -------------------------------------------------------------


@dataclass(frozen=True)
class CorrectionLetter:
    """Carta de Correção Eletrônica (CC-e)."""

    access_key: str
    correction: str
    sequence: int
    usage_conditions: str | None = None
    timestamp: datetime | None = None
    batch_id: str | None = None

    @property
    def event_type(self) -> EventType:
        return EventType.CORRECTION_LETTER


@dataclass(frozen=True)
class Cancellation:
    """Cancelamento de um documento autorizado; sempre sequência 1."""

    access_key: str
    protocol: str
    justification: str
    authorized_at: datetime | None = None
    timestamp: datetime | None = None
    batch_id: str | None = None

    @property
    def event_type(self) -> EventType:
        return EventType.CANCELLATION

    @property
    def sequence(self) -> int:
        return 1


@dataclass(frozen=True)
class CancellationBySubstitution(Cancellation):
    """NFC-e cancellation referencing the document that replaces it."""

    replacement_key: str = ""
    application_version: str = ""
    author_region: Region | int | str | None = None

    @property
    def event_type(self) -> EventType:
        return EventType.CANCELLATION_BY_SUBSTITUTION


@dataclass(frozen=True)
class NumberInvalidation:
    """Inutilização de uma faixa de números não utilizados numa série."""

    region: Region | int | str
    issuer_id: str
    model: DocumentModel | int | str
    series: int
    start: int
    end: int
    justification: str
    year: int | None = None

    @property
    def request_id(self) -> str:
        return invalidation_request_id(
            self.region,
            self.year if self.year is not None else date.today().year,
            self.issuer_id,
            self.model,
            self.series,
            self.start,
            self.end,
        )


FiscalEvent = CorrectionLetter | Cancellation | CancellationBySubstitution


# -- Validators ---------------------------------------------------------------


def validate_correction_letter(letter: CorrectionLetter, *, last_sequence: int = 0) -> CorrectionLetter:
    """Validate a CC-e against the sequence already registered for the document.

    ``last_sequence`` é a maior sequência já registada (0 se nenhuma). A nova
    sequência tem de ser exactamente ``last_sequence + 1`` e não pode passar
    de 20.
    """

    key = validate_access_key(letter.access_key)
    sequence = letter.sequence
    if not CORRECTION_MIN_SEQUENCE <= sequence <= CORRECTION_MAX_SEQUENCE:
        raise SequenceViolation(
            f"Sequência da CC-e deve estar entre {CORRECTION_MIN_SEQUENCE} e "
            f"{CORRECTION_MAX_SEQUENCE}, recebida {sequence}",
            sequence=sequence,
        )
    expected = last_sequence + 1
    if sequence != expected:
        raise SequenceViolation(
            f"Sequência da CC-e fora de ordem: esperada {expected}, recebida {sequence}",
            sequence=sequence,
            expected=expected,
        )

    correction = validate_text_length(
        letter.correction,
        field_name="correction",
        minimum=CORRECTION_MIN_LENGTH,
        maximum=CORRECTION_MAX_LENGTH,
    )
    if not CORRECTION_TEXT_PATTERN.fullmatch(correction):
        raise InvalidField("correction", "Texto da correção contém caracteres não permitidos")

    conditions = sanitize_text(letter.usage_conditions) or USAGE_CONDITIONS
    return replace(letter, access_key=key, correction=correction, usage_conditions=conditions)


def _as_brasilia(moment: datetime) -> datetime:
    return moment.replace(tzinfo=BRASILIA) if moment.tzinfo is None else moment


def check_cancellation_deadline(authorized_at: datetime, now: datetime | None = None) -> datetime:
    """Return the cancellation deadline, raising if ``now`` is past it.

    Valores sem fuso horário são lidos como horário de Brasília.
    """

    authorized_at = _as_brasilia(authorized_at)
    now = datetime.now(BRASILIA) if now is None else _as_brasilia(now)
    deadline = authorized_at + CANCELLATION_WINDOW
    if now > deadline:
        raise DeadlineExceeded(
            f"Prazo de cancelamento expirado em {deadline.isoformat()}",
            authorized_at=authorized_at.isoformat(),
            deadline=deadline.isoformat(),
        )
    return deadline


def validate_cancellation(cancellation: Cancellation, *, now: datetime | None = None) -> Cancellation:
    """Validate a cancellation (or cancellation by substitution)."""

    key = validate_access_key(cancellation.access_key)
    protocol = _require_digits("protocol", cancellation.protocol, (15,))
    justification = validate_text_length(cancellation.justification)

    if cancellation.authorized_at is not None:
        check_cancellation_deadline(cancellation.authorized_at, now)
    else:
        LOGGER.debug("Data de autorização desconhecida para %s; prazo não verificado", key)

    changes: dict[str, Any] = {
        "access_key": key,
        "protocol": protocol,
        "justification": justification,
    }
    if isinstance(cancellation, CancellationBySubstitution):
        if parse_access_key(key).model != DocumentModel.NFCE.code:
            raise InvalidField(
                "access_key",
                "Cancelamento por substituição só se aplica a NFC-e (modelo 65)",
            )
        replacement = validate_access_key(cancellation.replacement_key)
        if replacement == key:
            raise InvalidField("replacement_key", "A chave substituta tem de ser diferente da cancelada")
        version = sanitize_text(cancellation.application_version, 20)
        if not version:
            raise InvalidField("application_version", "Versão da aplicação (verAplic) obrigatória")
        changes.update(replacement_key=replacement, application_version=version)
    return replace(cancellation, **changes)


def invalidation_request_id(
    region: Region | int | str,
    year: int,
    issuer_id: str,
    model: DocumentModel | int | str,
    series: int,
    start: int,
    end: int,
) -> str:
    """Deterministic ``Id`` of an ``infInut`` element."""

    return (
        f"ID{Region.parse(region).code}{year % 100:02d}{str(issuer_id).zfill(14)}"
        f"{DocumentModel.parse(model).code}{series:03d}{start:09d}{end:09d}"
    )


def validate_invalidation(request: NumberInvalidation, *, today: date | None = None) -> NumberInvalidation:
    """Validate a number range invalidation and fill in the year."""

    if not 1 <= request.series <= INVALIDATION_MAX_SERIES:
        raise InvalidRange(
            f"Série deve estar entre 1 e {INVALIDATION_MAX_SERIES}, recebida {request.series}",
            series=request.series,
        )
    for name, value in (("start", request.start), ("end", request.end)):
        if not 1 <= value <= INVALIDATION_MAX_NUMBER:
            raise InvalidRange(
                f"Número '{name}' deve estar entre 1 e {INVALIDATION_MAX_NUMBER}, recebido {value}",
                field=name,
                value=value,
            )
    if request.start > request.end:
        raise InvalidRange(
            f"Número inicial {request.start} maior que o final {request.end}",
            start=request.start,
            end=request.end,
        )

    issuer_id = _require_digits("issuer_id", request.issuer_id, (11, 14))
    justification = validate_text_length(request.justification)
    year = request.year if request.year is not None else (today or date.today()).year
    return replace(
        request,
        region=Region.parse(request.region),
        model=DocumentModel.parse(request.model),
        issuer_id=issuer_id,
        justification=justification,
        year=year,
    )


# -- Lifecycle ----------------------------------------------------------------


@dataclass
class DocumentLifecycle:
    """Post-authorization state of one document.

    The lifecycle only tracks what the caller tells it was registered; it
    does not talk to the authority. Use :meth:`check_correction` and
    :meth:`check_cancellation` before sending and the ``record_*`` methods
    after the authority confirms the event.
    """

    access_key: str
    authorized_at: datetime
    protocol: str | None = None
    state: DocumentState = DocumentState.AUTHORIZED
    last_correction_sequence: int = 0
    history: list[tuple[EventType | str, int]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.access_key = validate_access_key(self.access_key)

    @property
    def is_terminal(self) -> bool:
        return self.state in (DocumentState.CANCELLED, DocumentState.INVALIDATED)

    def next_correction_sequence(self) -> int:
        sequence = self.last_correction_sequence + 1
        if sequence > CORRECTION_MAX_SEQUENCE:
            raise SequenceViolation(
                f"Limite de {CORRECTION_MAX_SEQUENCE} cartas de correção atingido",
                sequence=sequence,
            )
        return sequence

    def _require_open(self, action: str) -> None:
        if self.state is DocumentState.CANCELLED and action == "cancelar":
            raise DuplicateEvent(f"Documento {self.access_key} já está cancelado")
        if self.is_terminal:
            raise InvalidDocumentState(
                f"Não é possível {action} um documento no estado {self.state.value}",
                state=self.state.value,
            )

    def _require_same_key(self, key: str) -> None:
        if validate_access_key(key) != self.access_key:
            raise InvalidField("access_key", "O evento refere-se a outro documento", key=key)

    def check_correction(self, letter: CorrectionLetter) -> CorrectionLetter:
        self._require_open("corrigir")
        self._require_same_key(letter.access_key)
        return validate_correction_letter(letter, last_sequence=self.last_correction_sequence)

    def record_correction(self, letter: CorrectionLetter) -> None:
        self.check_correction(letter)
        self.last_correction_sequence = letter.sequence
        self.state = DocumentState.CORRECTED
        self.history.append((letter.event_type, letter.sequence))

    def check_cancellation(self, cancellation: Cancellation, *, now: datetime | None = None) -> Cancellation:
        self._require_open("cancelar")
        self._require_same_key(cancellation.access_key)
        changes: dict[str, Any] = {}
        if cancellation.authorized_at is None:
            changes["authorized_at"] = self.authorized_at
        if not cancellation.protocol and self.protocol:
            changes["protocol"] = self.protocol
        if changes:
            cancellation = replace(cancellation, **changes)
        return validate_cancellation(cancellation, now=now)

    def record_cancellation(self, cancellation: Cancellation) -> None:
        self._require_open("cancelar")
        self.state = DocumentState.CANCELLED
        self.history.append((cancellation.event_type, cancellation.sequence))

    def record_invalidation(self) -> None:
        self._require_open("inutilizar")
        self.state = DocumentState.INVALIDATED
        self.history.append(("invalidation", 1))


__all__ = [
    "EVENT_VERSION",
    "CORRECTION_MIN_SEQUENCE",
    "CORRECTION_MAX_SEQUENCE",
    "CORRECTION_MIN_LENGTH",
    "CORRECTION_MAX_LENGTH",
    "JUSTIFICATION_MIN_LENGTH",
    "JUSTIFICATION_MAX_LENGTH",
    "CANCELLATION_WINDOW",
    "CORRECTION_TEXT_PATTERN",
    "USAGE_CONDITIONS",
    "EventType",
    "DocumentState",
    "CorrectionLetter",
    "Cancellation",
    "CancellationBySubstitution",
    "NumberInvalidation",
    "FiscalEvent",
    "sanitize_text",
    "validate_text_length",
    "validate_correction_letter",
    "check_cancellation_deadline",
    "validate_cancellation",
    "invalidation_request_id",
    "validate_invalidation",
    "DocumentLifecycle",
]
