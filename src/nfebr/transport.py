"""HTTP transport for SOAP calls, built on a :class:`requests.Session`."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Callable

import requests
from lxml import etree
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .endpoints import ServiceEndpoint
from .errors import (
    AuthorityRejected,
    ConfigurationError,
    ConnectionFailure,
    HttpStatusError,
    NFeError,
    OperationCancelled,
    TransportTimeout,
    UnparsableResponse,
)
from .logging import ExchangeLog, ExchangeRecord
from .soap import SoapVersion, build_envelope, find_fault, parse_document, request_headers

LOGGER = logging.getLogger("nfebr.transport")

TRANSIENT_HTTP_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(slots=True)
class TransportConfig:
    """Timeouts, retries and client certificate used by :class:`Transport`.

    ``certificate_file``/``key_file`` são ficheiros PEM; quando a chave está
    no mesmo ficheiro do certificado basta ``certificate_file``.
    """

    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    certificate_file: str | None = None
    key_file: str | None = None
    verify: bool | str = True
    soap_version: SoapVersion = SoapVersion.SOAP12
    require_certificate: bool = True

    def client_certificate(self) -> str | tuple[str, str] | None:
        """Return the value for ``requests``' ``cert`` argument."""

        if not self.certificate_file:
            if self.require_certificate:
                raise ConfigurationError(
                    "Certificado digital não configurado (NFEBR_CERT_FILE)",
                    setting="certificate_file",
                )
            return None
        for path in filter(None, (self.certificate_file, self.key_file)):
            if not Path(path).is_file():
                raise ConfigurationError(f"Ficheiro de certificado não encontrado: {path}", path=path)
        if self.key_file:
            return (self.certificate_file, self.key_file)
        return self.certificate_file


@dataclass(frozen=True, slots=True)
class TransportExchange:
    """Last request/response pair, kept for diagnostics only."""

    url: str
    action: str
    request: str
    response: str
    status: int | None
    attempt: int
    recorded_at: datetime = field(default_factory=datetime.now)


class Transport:
    """POST SOAP envelopes with bounded, fixed-delay retries.

    Only timeouts, connection errors and HTTP 408/429/5xx without a SOAP fault
    are retried. A well-formed rejection (SOAP fault) is raised immediately
    as :class:`AuthorityRejected`.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        *,
        session: requests.Session | None = None,
        exchange_log: ExchangeLog | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or TransportConfig()
        self.session = session or requests.Session()
        self.exchange_log = exchange_log
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_exchange: TransportExchange | None = None

    @property
    def last_exchange(self) -> TransportExchange | None:
        with self._lock:
            return self._last_exchange

    def _record(self, exchange: TransportExchange) -> None:
        with self._lock:
            self._last_exchange = exchange

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _attempt_timeout(self, expires_at: float | None) -> float:
        if expires_at is None:
            return self.config.timeout
        remaining = expires_at - time.monotonic()
        if remaining <= 0:
            raise TransportTimeout("Prazo total da chamada esgotado")
        return min(self.config.timeout, remaining)

    def _wait(self, delay: float, *, expires_at: float | None, cancel_event: threading.Event | None) -> None:
        if expires_at is not None and time.monotonic() + delay >= expires_at:
            raise TransportTimeout("Prazo total da chamada esgotado antes da nova tentativa")
        if cancel_event is not None:
            if cancel_event.wait(delay):
                raise OperationCancelled("Chamada cancelada durante a espera entre tentativas")
        elif delay > 0:
            self._sleep(delay)

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Chamada cancelada pelo chamador")

    def _before_retry(self, retry_state: RetryCallState) -> None:
        LOGGER.warning(
            "%s (tentativa %s); nova tentativa em %ss",
            retry_state.outcome.exception() if retry_state.outcome else "?",
            retry_state.attempt_number,
            self.config.retry_delay,
        )

    def call(
        self,
        endpoint: ServiceEndpoint,
        payload: etree._Element | bytes | str,
        *,
        deadline: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Send ``payload`` to ``endpoint`` and return the raw response text.

        Parameters
        ----------
        deadline:
            Orçamento total em segundos, partilhado por todas as tentativas e
            esperas.
        cancel_event:
            Quando activado interrompe a espera entre tentativas e descarta o
            resultado de uma tentativa em curso.
        """

        cert = self.config.client_certificate()
        if not isinstance(payload, etree._Element):
            payload = parse_document(payload)
        body = build_envelope(endpoint, payload, self.config.soap_version)
        request_text = body.decode("utf-8")
        headers = request_headers(endpoint, self.config.soap_version)

        started = time.monotonic()
        expires_at = started + deadline if deadline is not None else None
        attempts = max(0, self.config.max_retries) + 1
        attempt = 0
        status: int | None = None

        def send() -> str:
            nonlocal attempt, status
            attempt += 1
            status = None
            self._check_cancelled(cancel_event)
            timeout = self._attempt_timeout(expires_at)
            try:
                response = self.session.post(
                    endpoint.url,
                    data=body,
                    headers=headers,
                    timeout=timeout,
                    cert=cert,
                    verify=self.config.verify,
                )
            except requests.Timeout as exc:
                self._record(TransportExchange(endpoint.url, endpoint.action, request_text, "", None, attempt))
                raise TransportTimeout(
                    f"Tempo esgotado ao contactar {endpoint.url}", url=endpoint.url, attempts=attempt
                ) from exc
            except (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema, requests.exceptions.InvalidSchema) as exc:
                self._record(TransportExchange(endpoint.url, endpoint.action, request_text, "", None, attempt))
                raise ConfigurationError(f"URL do serviço inválido: {endpoint.url}", url=endpoint.url) from exc
            except requests.RequestException as exc:
                self._record(TransportExchange(endpoint.url, endpoint.action, request_text, "", None, attempt))
                raise ConnectionFailure(
                    f"Falha de ligação a {endpoint.url}: {exc}", url=endpoint.url, attempts=attempt
                ) from exc

            status = response.status_code
            response_text = response.content.decode("utf-8", errors="replace")
            self._record(TransportExchange(endpoint.url, endpoint.action, request_text, response_text, status, attempt))
            self._check_cancelled(cancel_event)

            if status < 400:
                return response_text
            fault = self._fault(response_text)
            if fault is not None:
                raise AuthorityRejected(fault[0], fault[1], fault=True, http_status=status)
            if status not in TRANSIENT_HTTP_STATUSES:
                raise HttpStatusError(status, response_text)
            raise ConnectionFailure(
                f"HTTP {status} transitório em {endpoint.url}", url=endpoint.url, status=status, attempts=attempt
            )

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(self.config.retry_delay),
            retry=retry_if_exception_type((TransportTimeout, ConnectionFailure)),
            sleep=partial(self._wait, expires_at=expires_at, cancel_event=cancel_event),
            before_sleep=self._before_retry,
            reraise=True,
        )
        try:
            response_text = retrying(send)
        except NFeError as exc:
            if attempt >= attempts and isinstance(exc, (TransportTimeout, ConnectionFailure)):
                LOGGER.error("%s: desistência após %s tentativas", endpoint.url, attempt)
            self._log(endpoint, attempt, status, exc.kind, started)
            raise

        LOGGER.info("%s %s respondeu HTTP %s na tentativa %s", endpoint.service.value, endpoint.url, status, attempt)
        self._log(endpoint, attempt, status, "ok", started)
        return response_text

    @staticmethod
    def _fault(text: str) -> tuple[str, str] | None:
        try:
            return find_fault(parse_document(text))
        except UnparsableResponse:
            return None

    def _log(self, endpoint: ServiceEndpoint, attempts: int, status: int | None, outcome: str, started: float) -> None:
        if self.exchange_log is None:
            return
        self.exchange_log.append(
            ExchangeRecord(
                service=endpoint.service.value,
                url=endpoint.url,
                attempts=attempts,
                status=status,
                outcome=outcome,
                elapsed=time.monotonic() - started,
            )
        )


__all__ = [
    "TRANSIENT_HTTP_STATUSES",
    "TransportConfig",
    "TransportExchange",
    "Transport",
]
