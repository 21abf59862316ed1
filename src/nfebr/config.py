"""Client settings read from ``NFEBR_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, TypeVar

from .errors import ConfigurationError, NFeError
from .regions import DocumentModel, Environment, Region
from .soap import SoapVersion
from .transport import TransportConfig

_PREFIX = "NFEBR_"
_DEFAULT_LOG_DIR = Path.home() / ".nfebr" / "logs"

T = TypeVar("T")


@dataclass(frozen=True)
class ClientSettings:
    """Everything needed to build a :class:`nfebr.client.DocumentClient`."""

    region: Region | None = None
    environment: Environment = Environment.HOMOLOGATION
    model: DocumentModel = DocumentModel.NFE
    issuer_id: str = ""
    cert_file: str | None = None
    key_file: str | None = None
    ca_bundle: str | None = None
    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    soap_version: SoapVersion = SoapVersion.SOAP12
    log_dir: Path = _DEFAULT_LOG_DIR

    def transport_config(self, *, require_certificate: bool = True) -> TransportConfig:
        return TransportConfig(
            timeout=self.timeout,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            certificate_file=self.cert_file,
            key_file=self.key_file,
            verify=self.ca_bundle or True,
            soap_version=self.soap_version,
            require_certificate=require_certificate,
        )

    def require_region(self) -> Region:
        if self.region is None:
            raise ConfigurationError("Região do emitente não configurada (NFEBR_REGION)", setting="region")
        return self.region


def _convert(environ: Mapping[str, str], name: str, converter: Callable[[str], T], default: T) -> T:
    raw = environ.get(_PREFIX + name, "").strip()
    if not raw:
        return default
    try:
        return converter(raw)
    except (NFeError, ValueError) as exc:
        raise ConfigurationError(
            f"Valor inválido em {_PREFIX}{name}: {raw!r}", setting=name.lower(), value=raw
        ) from exc


def _non_negative(converter: Callable[[str], T]) -> Callable[[str], T]:
    def wrapper(raw: str) -> T:
        value = converter(raw)
        if value < 0:  # type: ignore[operator]
            raise ValueError(raw)
        return value

    return wrapper


def _optional(environ: Mapping[str, str], name: str) -> str | None:
    return environ.get(_PREFIX + name, "").strip() or None


def load_settings(environ: Mapping[str, str] | None = None) -> ClientSettings:
    """Build :class:`ClientSettings` from ``environ`` (defaults to ``os.environ``)."""

    env = os.environ if environ is None else environ
    return ClientSettings(
        region=_convert(env, "REGION", Region.parse, None),
        environment=_convert(env, "ENVIRONMENT", Environment.parse, Environment.HOMOLOGATION),
        model=_convert(env, "MODEL", DocumentModel.parse, DocumentModel.NFE),
        issuer_id=env.get(_PREFIX + "ISSUER_ID", "").strip(),
        cert_file=_optional(env, "CERT_FILE"),
        key_file=_optional(env, "KEY_FILE"),
        ca_bundle=_optional(env, "CA_BUNDLE"),
        timeout=_convert(env, "TIMEOUT", _non_negative(float), 30.0),
        max_retries=_convert(env, "MAX_RETRIES", _non_negative(int), 3),
        retry_delay=_convert(env, "RETRY_DELAY", _non_negative(float), 1.0),
        soap_version=_convert(env, "SOAP_VERSION", SoapVersion.parse, SoapVersion.SOAP12),
        log_dir=_convert(env, "LOG_DIR", Path, _DEFAULT_LOG_DIR),
    )


__all__ = ["ClientSettings", "load_settings"]
