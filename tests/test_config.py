from __future__ import annotations

from pathlib import Path

import pytest

from nfebr.config import ClientSettings, load_settings
from nfebr.errors import ConfigurationError
from nfebr.regions import DocumentModel, Environment, Region
from nfebr.soap import SoapVersion


def test_defaults_from_empty_environment() -> None:
    settings = load_settings({})

    assert settings.region is None
    assert settings.environment is Environment.HOMOLOGATION
    assert settings.model is DocumentModel.NFE
    assert settings.max_retries == 3
    assert settings.soap_version is SoapVersion.SOAP12


def test_values_are_parsed(tmp_path) -> None:
    settings = load_settings(
        {
            "NFEBR_REGION": "go",
            "NFEBR_ENVIRONMENT": "1",
            "NFEBR_MODEL": "65",
            "NFEBR_ISSUER_ID": " 33009911002506 ",
            "NFEBR_CERT_FILE": "/certs/a1.pem",
            "NFEBR_TIMEOUT": "12.5",
            "NFEBR_MAX_RETRIES": "0",
            "NFEBR_RETRY_DELAY": "2",
            "NFEBR_SOAP_VERSION": "1.1",
            "NFEBR_LOG_DIR": str(tmp_path),
        }
    )

    assert settings.region is Region.GO
    assert settings.environment is Environment.PRODUCTION
    assert settings.model is DocumentModel.NFCE
    assert settings.issuer_id == "33009911002506"
    assert settings.timeout == 12.5
    assert settings.max_retries == 0
    assert settings.soap_version is SoapVersion.SOAP11
    assert settings.log_dir == Path(tmp_path)
    assert settings.key_file is None


def test_os_environ_is_the_default(monkeypatch) -> None:
    monkeypatch.setenv("NFEBR_REGION", "35")

    assert load_settings().region is Region.SP


@pytest.mark.parametrize(
    "name, value",
    [
        ("NFEBR_REGION", "XX"),
        ("NFEBR_ENVIRONMENT", "3"),
        ("NFEBR_MAX_RETRIES", "-1"),
        ("NFEBR_TIMEOUT", "rapido"),
        ("NFEBR_SOAP_VERSION", "2.0"),
    ],
)
def test_invalid_values_raise_configuration_error(name, value) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings({name: value})
    assert excinfo.value.details["value"] == value


def test_transport_config_carries_settings() -> None:
    settings = ClientSettings(cert_file="a.pem", key_file="a.key", ca_bundle="ca.pem", max_retries=1)

    config = settings.transport_config(require_certificate=False)

    assert config.certificate_file == "a.pem"
    assert config.verify == "ca.pem"
    assert config.max_retries == 1
    assert not config.require_certificate
    assert ClientSettings().transport_config().verify is True


def test_require_region() -> None:
    with pytest.raises(ConfigurationError):
        ClientSettings().require_region()
    assert ClientSettings(region=Region.RS).require_region() is Region.RS
