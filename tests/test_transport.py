from __future__ import annotations

import threading

import pytest
import requests

from nfebr.errors import (
    AuthorityRejected,
    ConfigurationError,
    ConnectionFailure,
    HttpStatusError,
    OperationCancelled,
    TransportTimeout,
)
from nfebr.logging import ExchangeLog
from nfebr.messages import build_status_request
from nfebr.soap import SoapVersion
from nfebr.transport import Transport, TransportConfig

from tests.fakes import STATUS_ENDPOINT, FakeResponse, FakeSession, soap_envelope, soap_fault, status_xml

PAYLOAD = build_status_request(2, "GO")


def _transport(session, *, max_retries=2, retry_delay=0.5, sleeps=None, **kwargs) -> Transport:
    config = TransportConfig(
        max_retries=max_retries,
        retry_delay=retry_delay,
        require_certificate=False,
        **kwargs,
    )
    return Transport(config, session=session, sleep=(sleeps.append if sleeps is not None else lambda _: None))


def test_success_returns_raw_text_and_records_exchange() -> None:
    body = soap_envelope(status_xml())
    session = FakeSession(FakeResponse(200, body))
    log = ExchangeLog()
    transport = _transport(session)
    transport.exchange_log = log

    assert transport.call(STATUS_ENDPOINT, PAYLOAD) == body

    url, kwargs = session.calls[0]
    assert url == STATUS_ENDPOINT.url
    assert kwargs["timeout"] == 30.0
    assert "nfeDadosMsg" in kwargs["data"].decode("utf-8")
    exchange = transport.last_exchange
    assert exchange.response == body
    assert "consStatServ" in exchange.request
    assert exchange.status == 200
    assert [record.outcome for record in log] == ["ok"]


def test_timeouts_are_retried_then_surface_timeout() -> None:
    session = FakeSession(requests.ConnectTimeout("connect timed out"))
    sleeps: list[float] = []
    transport = _transport(session, max_retries=3, sleeps=sleeps)

    with pytest.raises(TransportTimeout) as excinfo:
        transport.call(STATUS_ENDPOINT, PAYLOAD)

    assert len(session.calls) == 4
    assert sleeps == [0.5, 0.5, 0.5]
    assert excinfo.value.details["attempts"] == 4
    assert transport.last_exchange.response == ""


def test_connection_errors_surface_connection_failure() -> None:
    session = FakeSession(requests.ConnectionError("refused"))
    transport = _transport(session, max_retries=1)

    with pytest.raises(ConnectionFailure):
        transport.call(STATUS_ENDPOINT, PAYLOAD)
    assert len(session.calls) == 2


def test_zero_retries_means_single_attempt() -> None:
    session = FakeSession(requests.ReadTimeout("slow"))

    with pytest.raises(TransportTimeout):
        _transport(session, max_retries=0).call(STATUS_ENDPOINT, PAYLOAD)
    assert len(session.calls) == 1


def test_recovers_after_transient_failure() -> None:
    body = soap_envelope(status_xml())
    session = FakeSession(requests.ConnectTimeout("first"), FakeResponse(503, "Service Unavailable"), FakeResponse(200, body))

    assert _transport(session).call(STATUS_ENDPOINT, PAYLOAD) == body
    assert len(session.calls) == 3


def test_soap_fault_is_not_retried() -> None:
    session = FakeSession(FakeResponse(500, soap_fault()))

    with pytest.raises(AuthorityRejected) as excinfo:
        _transport(session, max_retries=5).call(STATUS_ENDPOINT, PAYLOAD)

    assert len(session.calls) == 1
    assert excinfo.value.details["http_status"] == 500


@pytest.mark.parametrize("status", [401, 403, 404, 400])
def test_client_errors_are_not_retried(status) -> None:
    session = FakeSession(FakeResponse(status, "denied"))

    with pytest.raises(HttpStatusError) as excinfo:
        _transport(session).call(STATUS_ENDPOINT, PAYLOAD)

    assert excinfo.value.status == status
    assert len(session.calls) == 1


@pytest.mark.parametrize(
    "error",
    [
        requests.exceptions.MissingSchema("No scheme supplied"),
        requests.exceptions.InvalidSchema("No connection adapters were found"),
        requests.exceptions.InvalidURL("Invalid URL: No host supplied"),
    ],
)
def test_malformed_url_is_a_configuration_error(error) -> None:
    session = FakeSession(error)
    log = ExchangeLog()
    transport = _transport(session, max_retries=3)
    transport.exchange_log = log

    with pytest.raises(ConfigurationError):
        transport.call(STATUS_ENDPOINT, PAYLOAD)

    assert len(session.calls) == 1
    assert len(log) == 1
    assert log.records()[0].outcome == "configuration"


def test_missing_certificate_is_a_configuration_error() -> None:
    session = FakeSession(FakeResponse(200, soap_envelope(status_xml())))
    transport = Transport(TransportConfig(), session=session)

    with pytest.raises(ConfigurationError):
        transport.call(STATUS_ENDPOINT, PAYLOAD)
    assert session.calls == []


def test_certificate_files_are_presented(tmp_path) -> None:
    cert = tmp_path / "cert.pem"
    key = tmp_path / "key.pem"
    cert.write_text("cert", encoding="utf-8")
    key.write_text("key", encoding="utf-8")
    session = FakeSession(FakeResponse(200, soap_envelope(status_xml())))
    config = TransportConfig(certificate_file=str(cert), key_file=str(key), verify=str(tmp_path / "ca.pem"))

    Transport(config, session=session).call(STATUS_ENDPOINT, PAYLOAD)

    _, kwargs = session.calls[0]
    assert kwargs["cert"] == (str(cert), str(key))
    assert kwargs["verify"] == str(tmp_path / "ca.pem")


def test_certificate_path_must_exist(tmp_path) -> None:
    config = TransportConfig(certificate_file=str(tmp_path / "missing.pem"))

    with pytest.raises(ConfigurationError):
        config.client_certificate()


def test_soap11_sends_soapaction_header() -> None:
    session = FakeSession(FakeResponse(200, soap_envelope(status_xml())))

    _transport(session, soap_version=SoapVersion.SOAP11).call(STATUS_ENDPOINT, PAYLOAD)

    headers = session.calls[0][1]["headers"]
    assert headers["SOAPAction"] == f'"{STATUS_ENDPOINT.action}"'


def test_cancellation_before_first_attempt() -> None:
    session = FakeSession(FakeResponse(200, ""))
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        _transport(session).call(STATUS_ENDPOINT, PAYLOAD, cancel_event=cancel)
    assert session.calls == []


def test_cancellation_interrupts_pending_retry() -> None:
    cancel = threading.Event()

    class CancellingSession(FakeSession):
        def post(self, url, **kwargs):
            cancel.set()
            return super().post(url, **kwargs)

    session = CancellingSession(requests.ConnectTimeout("down"))

    with pytest.raises(OperationCancelled):
        _transport(session, retry_delay=30.0).call(STATUS_ENDPOINT, PAYLOAD, cancel_event=cancel)
    assert len(session.calls) == 1


def test_exhausted_deadline_stops_retries() -> None:
    session = FakeSession(requests.ConnectTimeout("down"))

    with pytest.raises(TransportTimeout):
        _transport(session, max_retries=5, retry_delay=10.0).call(STATUS_ENDPOINT, PAYLOAD, deadline=1.0)
    assert len(session.calls) == 1


def test_attempt_timeout_is_capped_by_deadline() -> None:
    session = FakeSession(FakeResponse(200, soap_envelope(status_xml())))

    _transport(session).call(STATUS_ENDPOINT, PAYLOAD, deadline=5.0)

    assert session.calls[0][1]["timeout"] <= 5.0
