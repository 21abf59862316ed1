"""Exception hierarchy shared by every ``nfebr`` module.

Cada erro expõe um ``kind`` estável (útil para registos e para a interface de
linha de comandos) e um dicionário ``details`` com o contexto estruturado que
o chamador precisa para decidir a remediação.
"""

from __future__ import annotations

from typing import Any


class NFeError(RuntimeError):
    """Base class for all errors raised by the library."""

    kind = "error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details

    def as_cells(self) -> list[str]:
        """Serialise the error for tabular export."""

        return [self.kind, self.message]


# -- Identity -----------------------------------------------------------------


class IdentityError(NFeError):
    """Problems building or parsing an access key."""

    kind = "identity"


class InvalidField(IdentityError):
    """A field is empty, non numeric or does not fit its fixed width."""

    kind = "invalid_field"

    def __init__(self, field: str, message: str, **details: Any) -> None:
        super().__init__(message, field=field, **details)
        self.field = field


class MalformedKey(IdentityError):
    kind = "malformed_key"


class ChecksumMismatch(IdentityError):
    """The supplied check digit differs from the recomputed mod-11 digit."""

    kind = "checksum_mismatch"

    def __init__(self, key: str, expected: int, found: int) -> None:
        super().__init__(
            f"Dígito verificador inválido na chave {key}: esperado {expected}, encontrado {found}",
            key=key,
            expected=expected,
            found=found,
        )
        self.expected = expected
        self.found = found


# -- Event validation ---------------------------------------------------------


class EventValidationError(NFeError):
    """Local pre-flight failure; no request is ever sent after one of these."""

    kind = "event_validation"


class SequenceViolation(EventValidationError):
    kind = "sequence_violation"


class DeadlineExceeded(EventValidationError):
    kind = "deadline_exceeded"


class JustificationTooShort(EventValidationError):
    kind = "justification_too_short"


class JustificationTooLong(EventValidationError):
    kind = "justification_too_long"


class InvalidRange(EventValidationError):
    kind = "invalid_range"


class InvalidDocumentState(EventValidationError):
    """The requested event is not legal from the document's current state."""

    kind = "invalid_document_state"


class DuplicateEvent(EventValidationError):
    """Event already registered, either known locally or reported with 573."""

    kind = "duplicate_event"

    def __init__(
        self,
        message: str,
        *,
        status_code: str | None = None,
        status_message: str | None = None,
        **details: Any,
    ) -> None:
        super().__init__(
            message, status_code=status_code, status_message=status_message, **details
        )
        self.status_code = status_code
        self.status_message = status_message


# -- Resolution ---------------------------------------------------------------


class ResolutionError(NFeError):
    kind = "resolution"


class UnknownRegion(ResolutionError):
    kind = "unknown_region"


class UnsupportedServiceForModel(ResolutionError):
    kind = "unsupported_service"


# -- Transport ----------------------------------------------------------------


class TransportError(NFeError):
    kind = "transport"


class TransportTimeout(TransportError):
    """The authority did not answer in time, after every allowed attempt."""

    kind = "timeout"


class ConnectionFailure(TransportError):
    """Network level failure (DNS, TLS, refused connection, 5xx without fault)."""

    kind = "connection_failure"


class OperationCancelled(TransportError):
    kind = "cancelled"


class HttpStatusError(TransportError):
    """Non transient HTTP status answered without a SOAP fault."""

    kind = "http_status"

    def __init__(self, status: int, body: str = "") -> None:
        super().__init__(f"HTTP {status} devolvido pela SEFAZ", status=status, body=body[:500])
        self.status = status


class UnparsableResponse(TransportError):
    kind = "unparsable_response"


class AuthorityRejected(TransportError):
    """Well-formed rejection from the authority, never retried."""

    kind = "authority_rejected"

    def __init__(
        self,
        status_code: str,
        status_message: str,
        *,
        result: Any = None,
        **details: Any,
    ) -> None:
        super().__init__(
            f"SEFAZ rejeitou o pedido: {status_code} - {status_message}",
            status_code=status_code,
            status_message=status_message,
            **details,
        )
        self.status_code = status_code
        self.status_message = status_message
        self.result = result


# -- Configuration and collaborators ------------------------------------------


class ConfigurationError(NFeError):
    kind = "configuration"


class SigningError(NFeError):
    """The signing collaborator returned an element without a signature."""

    kind = "signing"


class ContingencyNotActive(NFeError):
    kind = "contingency_not_active"


class ContingencyAlreadyActive(NFeError):
    kind = "contingency_already_active"


__all__ = [
    "NFeError",
    "IdentityError",
    "InvalidField",
    "MalformedKey",
    "ChecksumMismatch",
    "EventValidationError",
    "SequenceViolation",
    "DeadlineExceeded",
    "JustificationTooShort",
    "JustificationTooLong",
    "InvalidRange",
    "InvalidDocumentState",
    "DuplicateEvent",
    "ResolutionError",
    "UnknownRegion",
    "UnsupportedServiceForModel",
    "TransportError",
    "TransportTimeout",
    "ConnectionFailure",
    "OperationCancelled",
    "HttpStatusError",
    "UnparsableResponse",
    "AuthorityRejected",
    "ConfigurationError",
    "SigningError",
    "ContingencyNotActive",
    "ContingencyAlreadyActive",
]
