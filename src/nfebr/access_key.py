"""Chave de acesso: build, parse and validate the 44-digit document identifier.

The key is the concatenation of nine fixed-width numeric fields::

    cUF(2) AAMM(4) CNPJ/CPF(14) mod(2) serie(3) nNF(9) tpEmis(1) cNF(8) cDV(1)

The last digit is a mod-11 check digit computed over the first 43.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date, datetime
from typing import Any

from .errors import ChecksumMismatch, InvalidField, MalformedKey
from .regions import DocumentModel, Region

LOGGER = logging.getLogger("nfebr.access_key")

KEY_LENGTH = 44

# (field name, width) in wire order, check digit excluded.
KEY_LAYOUT: tuple[tuple[str, int], ...] = (
    ("region", 2),
    ("year_month", 4),
    ("issuer_id", 14),
    ("model", 2),
    ("series", 3),
    ("number", 9),
    ("emission_type", 1),
    ("random_code", 8),
)


def mod11_check_digit(digits: str) -> int:
    """Return the mod-11 check digit for ``digits``.

    Os dígitos são percorridos da direita para a esquerda com pesos 2..9
    (voltando a 2 depois do 9). Restos 0 e 1 resultam em dígito 0.
    """

    total = 0
    weight = 2
    for char in reversed(digits):
        total += int(char) * weight
        weight = 2 if weight == 9 else weight + 1
    remainder = total % 11
    if remainder < 2:
        return 0
    return 11 - remainder


def _is_digits(text: str) -> bool:
    return text.isascii() and text.isdigit()


def _fixed_width(name: str, value: Any, width: int) -> str:
    if value is None:
        raise InvalidField(name, f"Campo '{name}' em falta")
    text = str(value.value if hasattr(value, "value") else value).strip()
    if not text:
        raise InvalidField(name, f"Campo '{name}' vazio")
    if not _is_digits(text):
        raise InvalidField(name, f"Campo '{name}' deve conter apenas dígitos: {text!r}", value=text)
    padded = text.zfill(width)
    if len(padded) != width:
        raise InvalidField(
            name,
            f"Campo '{name}' excede {width} dígitos: {text!r}",
            value=text,
            width=width,
        )
    return padded


def generate_random_code(number: str | int) -> str:
    """Return an 8-digit ``cNF`` that differs from the last 8 digits of ``number``."""

    trailing = str(number).zfill(9)[-8:]
    while True:
        candidate = f"{secrets.randbelow(10**8):08d}"
        if candidate != trailing:
            return candidate
        LOGGER.debug("cNF gerado coincide com o número do documento; a gerar outro")


@dataclass(frozen=True, slots=True)
class AccessKey:
    """Immutable, already validated access key split into its fields."""

    region: str
    year_month: str
    issuer_id: str
    model: str
    series: str
    number: str
    emission_type: str
    random_code: str
    check_digit: str

    def __str__(self) -> str:
        return self.digits

    @property
    def prefix(self) -> str:
        """The 43 digits covered by the check digit."""

        return "".join(getattr(self, name) for name, _ in KEY_LAYOUT)

    @property
    def digits(self) -> str:
        return self.prefix + self.check_digit

    @property
    def issue_year(self) -> int:
        return 2000 + int(self.year_month[:2])

    @property
    def issue_month(self) -> int:
        return int(self.year_month[2:])

    @property
    def document_model(self) -> DocumentModel:
        return DocumentModel.parse(self.model)

    @property
    def issuing_region(self) -> Region:
        return Region.parse(self.region)

    @property
    def formatted(self) -> str:
        return format_access_key(self.digits)

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


def build_access_key(
    region: Any,
    issuer_id: Any,
    model: Any,
    series: Any,
    number: Any,
    emission_type: Any,
    issue_date: date | datetime | None = None,
    random_code: Any = None,
    *,
    year_month: str | None = None,
) -> AccessKey:
    """Build a new :class:`AccessKey`.

    Parameters
    ----------
    region, issuer_id, model, series, number, emission_type:
        Campos numéricos; enums (``Region``, ``DocumentModel``...) são aceites.
        Cada campo é completado com zeros à esquerda até à sua largura.
    issue_date:
        Data de emissão usada para ``AAMM`` quando ``year_month`` não é dado.
        Por omissão usa a data corrente.
    random_code:
        ``cNF`` explícito. Quando omitido é gerado com :mod:`secrets`.

    Raises
    ------
    InvalidField
        Se algum campo estiver vazio, não for numérico ou não couber na sua
        largura, ou se ``random_code`` coincidir com o número do documento.
    """

    if year_month is None:
        issued = issue_date or datetime.now()
        year_month = f"{issued:%y%m}"

    values = {
        "region": _fixed_width("region", region, 2),
        "year_month": _fixed_width("year_month", year_month, 4),
        "issuer_id": _fixed_width("issuer_id", issuer_id, 14),
        "model": _fixed_width("model", model, 2),
        "series": _fixed_width("series", series, 3),
        "number": _fixed_width("number", number, 9),
        "emission_type": _fixed_width("emission_type", emission_type, 1),
    }

    month = int(values["year_month"][2:])
    if not 1 <= month <= 12:
        raise InvalidField("year_month", f"Mês inválido em AAMM: {values['year_month']}")

    if random_code is None:
        values["random_code"] = generate_random_code(values["number"])
    else:
        values["random_code"] = _fixed_width("random_code", random_code, 8)
        if values["random_code"] == values["number"][-8:]:
            raise InvalidField(
                "random_code",
                "O código numérico (cNF) não pode ser igual aos últimos 8 dígitos do número",
                value=values["random_code"],
            )

    prefix = "".join(values[name] for name, _ in KEY_LAYOUT)
    return AccessKey(check_digit=str(mod11_check_digit(prefix)), **values)


def parse_access_key(value: str | AccessKey) -> AccessKey:
    """Split and validate a 44-digit key.

    Raises :class:`MalformedKey` for wrong length or non digit characters and
    :class:`ChecksumMismatch` when the check digit does not match.
    """

    if isinstance(value, AccessKey):
        value = value.digits
    text = str(value).strip()
    if len(text) != KEY_LENGTH:
        raise MalformedKey(
            f"Chave de acesso deve ter {KEY_LENGTH} dígitos, recebidos {len(text)}",
            key=text,
        )
    if not _is_digits(text):
        raise MalformedKey("Chave de acesso contém caracteres não numéricos", key=text)

    parts: dict[str, str] = {}
    offset = 0
    for name, width in KEY_LAYOUT:
        parts[name] = text[offset : offset + width]
        offset += width

    expected = mod11_check_digit(text[:-1])
    found = int(text[-1])
    if expected != found:
        raise ChecksumMismatch(text, expected, found)
    return AccessKey(check_digit=text[-1], **parts)


def validate_access_key(value: str | AccessKey) -> str:
    """Return the normalised 44 digits of a valid key."""

    return parse_access_key(value).digits


def format_access_key(value: str | AccessKey) -> str:
    """Return the key in blocks of four digits, as printed on the DANFE."""

    digits = validate_access_key(value)
    return " ".join(digits[i : i + 4] for i in range(0, KEY_LENGTH, 4))


@dataclass(frozen=True)
class AccessKeyBuilder:
    """Accumulate key fields without mutating shared state.

    Every ``with_*`` call returns a new builder, so partially configured
    builders can be shared between threads and specialised independently::

        base = AccessKeyBuilder().with_issuer(region="35", issuer_id=cnpj, model=55)
        key = base.with_document(series=1, number=42).build()
    """

    region: Any = None
    issuer_id: Any = None
    model: Any = None
    series: Any = None
    number: Any = None
    emission_type: Any = 1
    issue_date: date | datetime | None = None
    random_code: Any = None
    year_month: str | None = field(default=None)

    def with_issuer(self, *, region: Any, issuer_id: Any, model: Any) -> "AccessKeyBuilder":
        return replace(self, region=region, issuer_id=issuer_id, model=model)

    def with_document(self, *, series: Any, number: Any) -> "AccessKeyBuilder":
        return replace(self, series=series, number=number)

    def with_emission_type(self, emission_type: Any) -> "AccessKeyBuilder":
        return replace(self, emission_type=emission_type)

    def with_issue_date(self, issue_date: date | datetime) -> "AccessKeyBuilder":
        return replace(self, issue_date=issue_date, year_month=None)

    def with_random_code(self, random_code: Any) -> "AccessKeyBuilder":
        return replace(self, random_code=random_code)

    def build(self) -> AccessKey:
        kwargs = {item.name: getattr(self, item.name) for item in fields(self)}
        year_month = kwargs.pop("year_month")
        return build_access_key(**kwargs, year_month=year_month)


__all__ = [
    "KEY_LENGTH",
    "KEY_LAYOUT",
    "AccessKey",
    "AccessKeyBuilder",
    "build_access_key",
    "parse_access_key",
    "validate_access_key",
    "format_access_key",
    "generate_random_code",
    "mod11_check_digit",
]
