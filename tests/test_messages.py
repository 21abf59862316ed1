from __future__ import annotations

from datetime import date, datetime

import pytest
from lxml import etree

from nfebr.access_key import build_access_key
from nfebr.errors import InvalidField
from nfebr.events import (
    Cancellation,
    CancellationBySubstitution,
    CorrectionLetter,
    NumberInvalidation,
    validate_correction_letter,
)
from nfebr.messages import (
    BRASILIA,
    EventMessageBuilder,
    build_authorization_batch,
    build_invalidation_request,
    build_protocol_query,
    build_receipt_query,
    build_registry_query,
    build_status_request,
    format_timestamp,
    serialize,
)
from nfebr.regions import Environment, Region

from tests.fakes import ISSUER_CNPJ, KNOWN_KEY, PROTOCOL

NS = {"n": "http://www.portalfiscal.inf.br/nfe"}
NOW = datetime(2024, 5, 2, 10, 0, tzinfo=BRASILIA)


def _builder() -> EventMessageBuilder:
    return EventMessageBuilder(ISSUER_CNPJ, Environment.HOMOLOGATION, clock=lambda: NOW)


def _text(element, path: str) -> str:
    return element.findtext(path, namespaces=NS)


def test_format_timestamp_assumes_brasilia_for_naive_values() -> None:
    assert format_timestamp(datetime(2024, 5, 2, 10, 0, 30, 999)) == "2024-05-02T10:00:30-03:00"


def test_cancellation_event_layout() -> None:
    cancellation = Cancellation(KNOWN_KEY, PROTOCOL, "Erro na emissao")

    evento = _builder().build_event(cancellation)

    info = evento.find("n:infEvento", NS)
    assert evento.get("versao") == "1.00"
    assert info.get("Id") == f"ID110111{KNOWN_KEY}01"
    assert _text(info, "n:cOrgao") == "52"
    assert _text(info, "n:tpAmb") == "2"
    assert _text(info, "n:CNPJ") == ISSUER_CNPJ
    assert _text(info, "n:dhEvento") == "2024-05-02T10:00:00-03:00"
    assert _text(info, "n:tpEvento") == "110111"
    assert _text(info, "n:nSeqEvento") == "1"
    detail = info.find("n:detEvento", NS)
    assert [etree.QName(child).localname for child in detail] == ["descEvento", "nProt", "xJust"]
    assert _text(detail, "n:descEvento") == "Cancelamento"


def test_correction_letter_event_layout() -> None:
    letter = validate_correction_letter(
        CorrectionLetter(KNOWN_KEY, "Correcao do endereco do destinatario", 2), last_sequence=1
    )

    evento = _builder().build_event(letter)

    info = evento.find("n:infEvento", NS)
    assert info.get("Id").endswith("02")
    assert _text(info, "n:detEvento/n:xCorrecao") == "Correcao do endereco do destinatario"
    assert _text(info, "n:detEvento/n:xCondUso").startswith("A Carta de Correção")


def test_substitution_event_layout() -> None:
    original = build_access_key(Region.SP, "12345678000195", 65, 1, 10, 1, date(2024, 5, 1), "87654321")
    replacement = build_access_key(Region.SP, "12345678000195", 65, 1, 11, 1, date(2024, 5, 1), "87654321")
    event = CancellationBySubstitution(
        original.digits,
        PROTOCOL,
        "Erro na emissao",
        replacement_key=replacement.digits,
        application_version="PDV-1.0",
    )

    detail = _builder().build_event(event).find("n:infEvento/n:detEvento", NS)

    assert [etree.QName(child).localname for child in detail] == [
        "descEvento",
        "cOrgaoAutor",
        "tpAutor",
        "verAplic",
        "nProt",
        "xJust",
        "chNFeRef",
    ]
    assert _text(detail, "n:cOrgaoAutor") == "35"
    assert _text(detail, "n:chNFeRef") == replacement.digits


def test_envelope_batch_limits() -> None:
    builder = _builder()
    evento = builder.build_event(Cancellation(KNOWN_KEY, PROTOCOL, "Erro na emissao"))

    envelope = builder.wrap([evento], "123")
    assert _text(envelope, "n:idLote") == "123"

    with pytest.raises(InvalidField):
        builder.wrap([])
    with pytest.raises(InvalidField):
        builder.wrap([evento] * 21, "1")
    with pytest.raises(InvalidField):
        builder.wrap([evento], "1234567890123456")


def test_status_and_query_requests() -> None:
    status = build_status_request(Environment.PRODUCTION, "GO")
    assert _text(status, "n:tpAmb") == "1"
    assert _text(status, "n:cUF") == "52"
    assert _text(status, "n:xServ") == "STATUS"

    query = build_protocol_query("homologacao", KNOWN_KEY)
    assert _text(query, "n:chNFe") == KNOWN_KEY
    assert _text(query, "n:xServ") == "CONSULTAR"

    receipt = build_receipt_query(2, "521000012345678")
    assert _text(receipt, "n:nRec") == "521000012345678"
    with pytest.raises(InvalidField):
        build_receipt_query(2, "123")


def test_authorization_batch() -> None:
    nfe = '<NFe xmlns="http://www.portalfiscal.inf.br/nfe"><infNFe Id="NFe1"/></NFe>'

    batch = build_authorization_batch([nfe], "42", synchronous=True)

    assert _text(batch, "n:idLote") == "42"
    assert _text(batch, "n:indSinc") == "1"
    assert batch.find("n:NFe", NS) is not None

    with pytest.raises(InvalidField):
        build_authorization_batch([nfe, nfe], synchronous=True)
    with pytest.raises(InvalidField):
        build_authorization_batch(["<Outro/>"])
    with pytest.raises(InvalidField):
        build_authorization_batch([])


def test_invalidation_request() -> None:
    request = NumberInvalidation("GO", ISSUER_CNPJ, 55, 1, 50, 100, "Numeracao pulada", year=2024)

    root = build_invalidation_request(request, Environment.HOMOLOGATION)

    info = root.find("n:infInut", NS)
    assert info.get("Id") == request.request_id
    assert _text(info, "n:xServ") == "INUTILIZAR"
    assert _text(info, "n:ano") == "24"
    assert _text(info, "n:mod") == "55"
    assert _text(info, "n:nNFIni") == "50"
    assert _text(info, "n:nNFFin") == "100"


def test_registry_query_requires_exactly_one_identifier() -> None:
    root = build_registry_query("GO", cnpj=ISSUER_CNPJ)

    assert root.get("versao") == "2.00"
    assert _text(root, "n:infCons/n:UF") == "GO"
    assert _text(root, "n:infCons/n:CNPJ") == ISSUER_CNPJ

    with pytest.raises(InvalidField):
        build_registry_query("GO")
    with pytest.raises(InvalidField):
        build_registry_query("GO", cnpj=ISSUER_CNPJ, state_registration="123")


def test_serialize_has_no_declaration() -> None:
    text = serialize(build_status_request(2, "SP"))

    assert text.startswith("<consStatServ")
