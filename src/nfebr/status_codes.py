"""Authority status codes (``cStat``) and their human readable descriptions."""

from __future__ import annotations

from enum import Enum


class StatusCode(Enum):
    """Closed set of ``cStat`` values the library knows how to interpret.

    Códigos não mapeados resolvem para :attr:`UNKNOWN`, mantendo o valor
    original disponível no resultado que o chamador recebe.
    """

    AUTHORIZED = (100, "Autorizado o uso da NF-e")
    CANCELLATION_HOMOLOGATED = (101, "Cancelamento de NF-e homologado")
    INVALIDATION_HOMOLOGATED = (102, "Inutilização de número homologado")
    BATCH_RECEIVED = (103, "Lote recebido com sucesso")
    BATCH_PROCESSED = (104, "Lote processado")
    BATCH_IN_PROCESSING = (105, "Lote em processamento")
    BATCH_NOT_FOUND = (106, "Lote não localizado")
    SERVICE_RUNNING = (107, "Serviço em operação")
    SERVICE_PAUSED = (108, "Serviço paralisado momentaneamente (curto prazo)")
    SERVICE_STOPPED = (109, "Serviço paralisado sem previsão")
    USE_DENIED = (110, "Uso denegado")
    REGISTRY_ONE_MATCH = (111, "Consulta cadastro com uma ocorrência")
    REGISTRY_MANY_MATCHES = (112, "Consulta cadastro com mais de uma ocorrência")
    EVENT_BATCH_PROCESSED = (128, "Lote de evento processado")
    EVENT_REGISTERED = (135, "Evento registrado e vinculado à NFe")
    EVENT_REGISTERED_NOT_LINKED = (136, "Evento registrado, mas não vinculado à NFe")
    AUTHORIZED_LATE = (150, "Autorizado o uso da NF-e, autorização fora de prazo")
    CANCELLATION_HOMOLOGATED_LATE = (151, "Cancelamento de NF-e homologado fora de prazo")
    CANCELLATION_APPROVED = (155, "Cancelamento homologado fora de prazo")
    SCHEMA_FAILURE = (215, "Rejeição: falha no schema XML")
    KEY_MISMATCH = (216, "Rejeição: chave de acesso difere da cadastrada")
    DOCUMENT_NOT_FOUND = (217, "Evento rejeitado - NFe não encontrada")
    DOCUMENT_NOT_AUTHORIZED = (218, "Evento rejeitado - NFe não autorizada ou fora do prazo")
    ENVIRONMENT_MISMATCH = (252, "Ambiente informado diverge do ambiente solicitado")
    ISSUER_CPF_NOT_REGISTERED = (401, "CPF do emitente não cadastrado")
    ISSUER_CNPJ_NOT_REGISTERED = (402, "CNPJ do emitente não cadastrado")
    INVALID_CORRECTION = (489, "Evento rejeitado - texto de correção inválido")
    DUPLICATE_EVENT = (573, "Evento já existe para esta NFe com a mesma sequência")
    SEQUENCE_EXCEEDED = (594, "Número de sequência maior que permitido")
    UNKNOWN = (0, "Código de status desconhecido")

    def __init__(self, code: int, description: str) -> None:
        self.code = code
        self.description = description

    @classmethod
    def from_code(cls, code: int | str | None) -> "StatusCode":
        try:
            number = int(str(code).strip())
        except (TypeError, ValueError):
            return cls.UNKNOWN
        return _BY_CODE.get(number, cls.UNKNOWN)


_BY_CODE: dict[int, StatusCode] = {
    member.code: member for member in StatusCode if member is not StatusCode.UNKNOWN
}

AUTHORIZED_CODES = frozenset({100, 150})
CANCELLED_CODES = frozenset({101, 151, 155})
DENIED_CODES = frozenset({110, 301, 302, 303})
EVENT_REGISTERED_CODES = frozenset({135, 136, 155})
BATCH_PENDING_CODES = frozenset({103, 105})
SERVICE_STATUS_CODES = frozenset({107, 108, 109})
REGISTRY_FOUND_CODES = frozenset({111, 112})
EVENT_BATCH_PROCESSED = 128
DUPLICATE_EVENT = 573


def describe(code: int | str | None) -> str:
    """Return the description for ``code`` or a generic unknown message."""

    status = StatusCode.from_code(code)
    if status is StatusCode.UNKNOWN:
        return f"Status desconhecido: {code}"
    return status.description


def status_table() -> dict[int, str]:
    """Return ``{code: description}`` for every known code, for UIs."""

    return {code: status.description for code, status in sorted(_BY_CODE.items())}


__all__ = [
    "StatusCode",
    "AUTHORIZED_CODES",
    "CANCELLED_CODES",
    "DENIED_CODES",
    "EVENT_REGISTERED_CODES",
    "BATCH_PENDING_CODES",
    "SERVICE_STATUS_CODES",
    "REGISTRY_FOUND_CODES",
    "EVENT_BATCH_PROCESSED",
    "DUPLICATE_EVENT",
    "describe",
    "status_table",
]
