"""Closed sets for regions, environments, document models and emission types."""

from __future__ import annotations

from datetime import timedelta, timezone
from enum import IntEnum

from .errors import InvalidField, UnknownRegion

# cOrgao used by events addressed to the national environment (Ambiente Nacional).
NATIONAL_ORGAN_CODE = 91

# Horário de Brasília; valores sem fuso são lidos neste fuso.
BRASILIA = timezone(timedelta(hours=-3))


class Region(IntEnum):
    """Brazilian federative units keyed by their IBGE code."""

    RO = 11
    AC = 12
    AM = 13
    RR = 14
    PA = 15
    AP = 16
    TO = 17
    MA = 21
    PI = 22
    CE = 23
    RN = 24
    PB = 25
    PE = 26
    AL = 27
    SE = 28
    BA = 29
    MG = 31
    ES = 32
    RJ = 33
    SP = 35
    PR = 41
    SC = 42
    RS = 43
    MS = 50
    MT = 51
    GO = 52
    DF = 53

    @property
    def code(self) -> str:
        """Two-digit IBGE code as used on the wire."""

        return f"{self.value:02d}"

    @classmethod
    def parse(cls, value: "Region | int | str") -> "Region":
        """Return the region for an IBGE code or an acronym.

        Valores desconhecidos levantam :class:`UnknownRegion`; nunca há
        recurso silencioso a uma região por omissão.
        """

        if isinstance(value, Region):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise UnknownRegion(f"Código de UF desconhecido: {value}", region=value) from None

        text = str(value).strip().upper()
        if text.isascii() and text.isdigit():
            return cls.parse(int(text))
        try:
            return cls[text]
        except KeyError:
            raise UnknownRegion(f"UF desconhecida: {value!r}", region=value) from None


class Environment(IntEnum):
    """Value of ``tpAmb``."""

    PRODUCTION = 1
    HOMOLOGATION = 2

    @property
    def is_production(self) -> bool:
        return self is Environment.PRODUCTION

    @classmethod
    def parse(cls, value: "Environment | int | str") -> "Environment":
        if isinstance(value, Environment):
            return value
        aliases = {
            "1": cls.PRODUCTION,
            "production": cls.PRODUCTION,
            "producao": cls.PRODUCTION,
            "produção": cls.PRODUCTION,
            "2": cls.HOMOLOGATION,
            "homologation": cls.HOMOLOGATION,
            "homologacao": cls.HOMOLOGATION,
            "homologação": cls.HOMOLOGATION,
            "staging": cls.HOMOLOGATION,
        }
        found = aliases.get(str(value).strip().lower())
        if found is None:
            raise InvalidField("environment", f"Ambiente inválido: {value!r}")
        return found


class DocumentModel(IntEnum):
    """Fiscal document model (``mod``)."""

    NFE = 55
    NFCE = 65

    @property
    def code(self) -> str:
        return str(self.value)

    @classmethod
    def parse(cls, value: "DocumentModel | int | str") -> "DocumentModel":
        if isinstance(value, DocumentModel):
            return value
        text = str(value).strip().lower()
        aliases = {"nfe": cls.NFE, "nf-e": cls.NFE, "nfce": cls.NFCE, "nfc-e": cls.NFCE}
        if text in aliases:
            return aliases[text]
        try:
            return cls(int(text))
        except ValueError:
            raise InvalidField("model", f"Modelo de documento não suportado: {value!r}") from None


class EmissionType(IntEnum):
    """Value of ``tpEmis``."""

    NORMAL = 1
    FS_IA = 2
    SCAN = 3
    EPEC = 4
    FS_DA = 5
    SVC_AN = 6
    SVC_RS = 7
    OFFLINE_NFCE = 9


__all__ = [
    "NATIONAL_ORGAN_CODE",
    "BRASILIA",
    "Region",
    "Environment",
    "DocumentModel",
    "EmissionType",
]
