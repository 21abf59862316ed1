"""Resolve the web service endpoint for a region, environment, model and service.

The per-authorizer URLs live in ``data/webservices.json``; set
``NFEBR_WEBSERVICES_PATH`` to use a different table. Extra sources can be
chained in front of the table through :class:`EndpointResolver`.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

from .errors import ConfigurationError, UnknownRegion, UnsupportedServiceForModel
from .regions import DocumentModel, Environment, Region

LOGGER = logging.getLogger("nfebr.endpoints")

_TABLE_ENV_VAR = "NFEBR_WEBSERVICES_PATH"
_DEFAULT_TABLE_PATH = Path(__file__).resolve().parent / "data" / "webservices.json"

WSDL_NAMESPACE_PREFIX = "http://www.portalfiscal.inf.br/nfe/wsdl/"
NATIONAL_AUTHORIZER = "AN"


class ServiceKind(str, Enum):
    STATUS = "status"
    AUTHORIZATION = "authorization"
    AUTHORIZATION_RESULT = "authorization_result"
    PROTOCOL_QUERY = "protocol_query"
    INVALIDATION = "invalidation"
    EVENT_RECEPTION = "event_reception"
    REGISTRY_QUERY = "registry_query"
    DISTRIBUTION = "distribution"


@dataclass(frozen=True)
class ServiceDefinition:
    """WSDL method/operation pair shared by every authorizer."""

    method: str
    operation: str
    version: str

    @property
    def namespace(self) -> str:
        return f"{WSDL_NAMESPACE_PREFIX}{self.operation}"

    @property
    def action(self) -> str:
        return f"{self.namespace}/{self.method}"


@dataclass(frozen=True)
class ServiceEndpoint:
    """Resolved endpoint; recomputed on every call."""

    url: str
    action: str
    service: ServiceKind
    authorizer: str
    method: str
    operation: str
    version: str

    @property
    def namespace(self) -> str:
        return f"{WSDL_NAMESPACE_PREFIX}{self.operation}"


@dataclass(frozen=True)
class EndpointTable:
    """Static data describing who hosts each service."""

    services: Mapping[ServiceKind, ServiceDefinition]
    model_services: Mapping[DocumentModel, frozenset[ServiceKind]]
    contingency_models: frozenset[DocumentModel]
    authorizers: Mapping[DocumentModel, Mapping[Region, str]]
    urls: Mapping[str, Mapping[Environment, Mapping[ServiceKind, str]]]

    def authorizer_for(self, region: Region, model: DocumentModel) -> str:
        mapping = self.authorizers.get(model, {})
        try:
            return mapping[region]
        except KeyError:
            raise UnknownRegion(
                f"Sem autorizador configurado para {region.name} no modelo {model.value}",
                region=region.name,
                model=model.value,
            ) from None

    def endpoint(self, authorizer: str, environment: Environment, service: ServiceKind) -> ServiceEndpoint | None:
        url = self.urls.get(authorizer, {}).get(environment, {}).get(service)
        definition = self.services.get(service)
        if not url or definition is None:
            return None
        return ServiceEndpoint(
            url=url,
            action=definition.action,
            service=service,
            authorizer=authorizer,
            method=definition.method,
            operation=definition.operation,
            version=definition.version,
        )


_ENVIRONMENT_KEYS = {"production": Environment.PRODUCTION, "homologation": Environment.HOMOLOGATION}

_CACHED_TABLE: tuple[Path, float, EndpointTable] | None = None


def _resolve_table_path() -> Path:
    candidate = os.getenv(_TABLE_ENV_VAR)
    if candidate:
        return Path(candidate)
    return _DEFAULT_TABLE_PATH


def _parse_table(payload: Mapping[str, Any]) -> EndpointTable:
    services = {
        ServiceKind(name): ServiceDefinition(
            method=item["method"],
            operation=item["operation"],
            version=item["version"],
        )
        for name, item in payload["services"].items()
    }
    model_services = {
        DocumentModel.parse(model): frozenset(ServiceKind(name) for name in names)
        for model, names in payload["model_services"].items()
    }
    authorizers = {
        DocumentModel.parse(model): {Region.parse(region): name for region, name in mapping.items()}
        for model, mapping in payload["authorizers"].items()
    }
    urls = {
        authorizer: {
            _ENVIRONMENT_KEYS[environment]: {ServiceKind(name): url for name, url in entries.items()}
            for environment, entries in environments.items()
        }
        for authorizer, environments in payload["endpoints"].items()
    }
    return EndpointTable(
        services=services,
        model_services=model_services,
        contingency_models=frozenset(
            DocumentModel.parse(model) for model in payload.get("contingency_models", [])
        ),
        authorizers=authorizers,
        urls=urls,
    )


def _load_table_from_disk(path: Path) -> EndpointTable:
    if not path.exists():
        raise ConfigurationError(f"Tabela de webservices '{path}' não encontrada", path=str(path))

    with path.open("r", encoding="utf-8") as handle:
        try:
            payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Tabela de webservices '{path}' não é JSON válido") from exc

    try:
        return _parse_table(payload)
    except (KeyError, ValueError, TypeError) as exc:
        raise ConfigurationError(f"Tabela de webservices '{path}' incompleta: {exc}") from exc


def load_endpoint_table(path: Path | None = None, *, force_reload: bool = False) -> EndpointTable:
    """Load the endpoint table, cached by path and modification time."""

    global _CACHED_TABLE

    table_path = path or _resolve_table_path()
    mtime = table_path.stat().st_mtime if table_path.exists() else 0.0

    if not force_reload and _CACHED_TABLE:
        cached_path, cached_mtime, cached_table = _CACHED_TABLE
        if cached_path == table_path and cached_mtime == mtime:
            return cached_table

    table = _load_table_from_disk(table_path)
    _CACHED_TABLE = (table_path, mtime, table)
    return table


class EndpointSource(Protocol):
    """A resolver placed in front of the primary table.

    ``service_kinds`` is read once, when the :class:`EndpointResolver` is
    built; ``lookup`` returning ``None`` hands the request to the next source.
    """

    service_kinds: frozenset[ServiceKind]

    def lookup(
        self,
        region: Region,
        environment: Environment,
        model: DocumentModel,
        service: ServiceKind,
    ) -> ServiceEndpoint | None: ...


class NationalEnvironmentSource:
    """Services hosted only by the national environment (Ambiente Nacional)."""

    service_kinds = frozenset({ServiceKind.DISTRIBUTION})

    def __init__(self, table: EndpointTable) -> None:
        self.table = table

    def lookup(
        self,
        region: Region,
        environment: Environment,
        model: DocumentModel,
        service: ServiceKind,
    ) -> ServiceEndpoint | None:
        if service not in self.table.model_services.get(model, frozenset()):
            return None
        return self.table.endpoint(NATIONAL_AUTHORIZER, environment, service)


class StaticEndpointSource:
    """Fixed URLs per service and environment, e.g. a local test double."""

    def __init__(
        self,
        urls: Mapping[tuple[ServiceKind, Environment], str],
        table: EndpointTable,
        *,
        authorizer: str = "CUSTOM",
    ) -> None:
        self.urls = dict(urls)
        self.table = table
        self.authorizer = authorizer
        self.service_kinds = frozenset(service for service, _ in self.urls)

    def lookup(
        self,
        region: Region,
        environment: Environment,
        model: DocumentModel,
        service: ServiceKind,
    ) -> ServiceEndpoint | None:
        url = self.urls.get((service, environment))
        definition = self.table.services.get(service)
        if url is None or definition is None:
            return None
        return ServiceEndpoint(
            url=url,
            action=definition.action,
            service=service,
            authorizer=self.authorizer,
            method=definition.method,
            operation=definition.operation,
            version=definition.version,
        )


def _as_environment(value: Environment | bool | int | str) -> Environment:
    if isinstance(value, bool):
        return Environment.PRODUCTION if value else Environment.HOMOLOGATION
    return Environment.parse(value)


class EndpointResolver:
    """Primary table plus an ordered chain of extra sources.

    Para cada ``ServiceKind`` as fontes adicionais que o declaram são
    consultadas primeiro, pela ordem recebida; a tabela principal é sempre o
    último recurso.
    """

    def __init__(
        self,
        table: EndpointTable | None = None,
        sources: Iterable[EndpointSource] | None = None,
    ) -> None:
        self.table = table or load_endpoint_table()
        if sources is None:
            sources = (NationalEnvironmentSource(self.table),)
        chain: dict[ServiceKind, list[EndpointSource]] = {}
        for source in sources:
            for service in source.service_kinds:
                chain.setdefault(service, []).append(source)
        self._chain: dict[ServiceKind, tuple[EndpointSource, ...]] = {
            service: tuple(items) for service, items in chain.items()
        }

    def resolve(
        self,
        region: Region | int | str,
        environment: Environment | bool | int | str,
        model: DocumentModel | int | str,
        service: ServiceKind | str,
        *,
        authorizer: str | None = None,
    ) -> ServiceEndpoint:
        """Return the endpoint or raise :class:`UnknownRegion`/:class:`UnsupportedServiceForModel`.

        ``authorizer`` força um autorizador (SVCAN/SVCRS em contingência).
        """

        region = Region.parse(region)
        environment = _as_environment(environment)
        model = DocumentModel.parse(model)
        try:
            service = ServiceKind(service)
        except ValueError:
            raise UnsupportedServiceForModel(f"Serviço desconhecido: {service!r}", service=str(service)) from None

        for source in self._chain.get(service, ()):
            found = source.lookup(region, environment, model, service)
            if found is not None:
                LOGGER.debug("Endpoint %s resolvido por %s: %s", service.value, type(source).__name__, found.url)
                return found

        if service not in self.table.model_services.get(model, frozenset()):
            raise UnsupportedServiceForModel(
                f"Serviço {service.value} não disponível para o modelo {model.value}",
                service=service.value,
                model=model.value,
            )

        if authorizer is None:
            authorizer = self.table.authorizer_for(region, model)
        elif model not in self.table.contingency_models:
            raise UnsupportedServiceForModel(
                f"Autorizador {authorizer} não atende o modelo {model.value}",
                service=service.value,
                model=model.value,
                authorizer=authorizer,
            )

        endpoint = self.table.endpoint(authorizer, environment, service)
        if endpoint is None:
            raise UnsupportedServiceForModel(
                f"Serviço {service.value} indisponível no autorizador {authorizer} "
                f"({environment.name.lower()})",
                service=service.value,
                model=model.value,
                authorizer=authorizer,
            )
        return endpoint


__all__ = [
    "ServiceKind",
    "ServiceDefinition",
    "ServiceEndpoint",
    "EndpointTable",
    "EndpointSource",
    "NationalEnvironmentSource",
    "StaticEndpointSource",
    "EndpointResolver",
    "load_endpoint_table",
]
