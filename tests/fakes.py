"""In-memory doubles shared by the client and transport tests."""

from __future__ import annotations

from lxml import etree

from nfebr.endpoints import ServiceEndpoint, ServiceKind

# Example key published in the NF-e integration manual (GO, modelo 55).
KNOWN_KEY = "52060433009911002506550120000007800267301615"
ISSUER_CNPJ = "33009911002506"
PROTOCOL = "152060000012345"

NFE_NS = "http://www.portalfiscal.inf.br/nfe"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
SOAP12_NS = "http://www.w3.org/2003/05/soap-envelope"
SOAP11_NS = "http://schemas.xmlsoap.org/soap/envelope/"

STATUS_ENDPOINT = ServiceEndpoint(
    url="https://sefaz.test/ws/NFeStatusServico4",
    action="http://www.portalfiscal.inf.br/nfe/wsdl/NFeStatusServico4/nfeStatusServicoNF",
    service=ServiceKind.STATUS,
    authorizer="GO",
    method="nfeStatusServicoNF",
    operation="NFeStatusServico4",
    version="4.00",
)


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "") -> None:
        self.status_code = status_code
        self.content = text.encode("utf-8")


class FakeSession:
    """Replay queued outcomes; the last one repeats once the queue drains."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, dict]] = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def close(self) -> None:
        pass


class FakeSigner:
    def __init__(self) -> None:
        self.references: list[str] = []

    def sign(self, element, reference_id):
        self.references.append(reference_id)
        etree.SubElement(element, f"{{{DSIG_NS}}}Signature")
        return element


class BrokenSigner:
    def sign(self, element, reference_id):
        return element


def soap_envelope(inner: str, *, wrapped: bool = True, operation: str = "NFeStatusServico4", soap_ns: str = SOAP12_NS) -> str:
    body = inner
    if wrapped:
        body = (
            f'<nfeResultMsg xmlns="http://www.portalfiscal.inf.br/nfe/wsdl/{operation}">{inner}</nfeResultMsg>'
        )
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<soap:Envelope xmlns:soap="{soap_ns}"><soap:Body>{body}</soap:Body></soap:Envelope>'
    )


def soap_fault(code: str = "soap:Receiver", message: str = "Certificado revogado") -> str:
    return (
        f'<soap:Envelope xmlns:soap="{SOAP12_NS}"><soap:Body><soap:Fault>'
        f"<soap:Code><soap:Value>{code}</soap:Value></soap:Code>"
        f'<soap:Reason><soap:Text xml:lang="pt">{message}</soap:Text></soap:Reason>'
        "</soap:Fault></soap:Body></soap:Envelope>"
    )


def status_xml(code: int = 107, message: str = "Servico em Operacao") -> str:
    return (
        f'<retConsStatServ xmlns="{NFE_NS}" versao="4.00"><tpAmb>2</tpAmb><verAplic>GO4.0</verAplic>'
        f"<cStat>{code}</cStat><xMotivo>{message}</xMotivo><cUF>52</cUF>"
        "<dhRecbto>2024-05-02T10:00:00-03:00</dhRecbto><tMed>1</tMed></retConsStatServ>"
    )


def event_xml(
    code: int = 135,
    message: str = "Evento registrado e vinculado a NF-e",
    *,
    batch_code: int = 128,
    event_type: str = "110111",
    sequence: int = 1,
    key: str = KNOWN_KEY,
) -> str:
    return (
        f'<retEnvEvento xmlns="{NFE_NS}" versao="1.00"><idLote>1</idLote><tpAmb>2</tpAmb>'
        f"<verAplic>GO4.0</verAplic><cOrgao>52</cOrgao><cStat>{batch_code}</cStat>"
        "<xMotivo>Lote de evento processado</xMotivo>"
        '<retEvento versao="1.00"><infEvento>'
        f"<tpAmb>2</tpAmb><verAplic>GO4.0</verAplic><cOrgao>52</cOrgao><cStat>{code}</cStat>"
        f"<xMotivo>{message}</xMotivo><chNFe>{key}</chNFe><tpEvento>{event_type}</tpEvento>"
        f"<nSeqEvento>{sequence}</nSeqEvento><dhRegEvento>2024-05-02T10:00:00-03:00</dhRegEvento>"
        "<nProt>152240000000001</nProt></infEvento></retEvento></retEnvEvento>"
    )


__all__ = [
    "KNOWN_KEY",
    "ISSUER_CNPJ",
    "PROTOCOL",
    "STATUS_ENDPOINT",
    "FakeResponse",
    "FakeSession",
    "FakeSigner",
    "BrokenSigner",
    "soap_envelope",
    "soap_fault",
    "status_xml",
    "event_xml",
]
