"""SOAP envelopes for the authority web services.

The authority answers with the result element either directly inside
``soap:Body`` or wrapped in ``nfeResultMsg``. :func:`extract_result` tries the
direct shape first and only then looks one wrapper level down.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Iterable

from lxml import etree

from .endpoints import ServiceEndpoint
from .errors import AuthorityRejected, UnparsableResponse

SOAP11_NAMESPACE = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP12_NAMESPACE = "http://www.w3.org/2003/05/soap-envelope"

REQUEST_WRAPPER = "nfeDadosMsg"
RESPONSE_WRAPPER = "nfeResultMsg"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)


class SoapVersion(Enum):
    SOAP11 = "1.1"
    SOAP12 = "1.2"

    @property
    def namespace(self) -> str:
        return SOAP11_NAMESPACE if self is SoapVersion.SOAP11 else SOAP12_NAMESPACE

    @classmethod
    def parse(cls, value: "SoapVersion | str") -> "SoapVersion":
        if isinstance(value, SoapVersion):
            return value
        text = str(value).strip().lower().replace("soap", "").strip()
        text = {"11": "1.1", "12": "1.2"}.get(text, text)
        return cls(text)


def _localname(element: etree._Element) -> str:
    return etree.QName(element).localname


def _children(element: etree._Element) -> list[etree._Element]:
    return [child for child in element if isinstance(child.tag, str)]


def request_headers(endpoint: ServiceEndpoint, version: SoapVersion = SoapVersion.SOAP12) -> dict[str, str]:
    if version is SoapVersion.SOAP11:
        return {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f'"{endpoint.action}"',
        }
    return {"Content-Type": f'application/soap+xml; charset=utf-8; action="{endpoint.action}"'}


def build_envelope(
    endpoint: ServiceEndpoint,
    payload: etree._Element,
    version: SoapVersion = SoapVersion.SOAP12,
) -> bytes:
    """Wrap ``payload`` in ``nfeDadosMsg`` and a SOAP envelope.

    O ``payload`` é copiado; o elemento do chamador (por vezes já assinado)
    não é alterado.
    """

    namespace = version.namespace
    envelope = etree.Element(f"{{{namespace}}}Envelope", nsmap={"soap": namespace})
    body = etree.SubElement(envelope, f"{{{namespace}}}Body")
    message = etree.SubElement(
        body,
        f"{{{endpoint.namespace}}}{REQUEST_WRAPPER}",
        nsmap={None: endpoint.namespace},
    )
    message.append(copy.deepcopy(payload))
    return etree.tostring(envelope, xml_declaration=True, encoding="utf-8")


def parse_document(raw: bytes | str) -> etree._Element:
    data = raw.encode("utf-8") if isinstance(raw, str) else raw
    if not data or not data.strip():
        raise UnparsableResponse("Resposta vazia da SEFAZ")
    try:
        return etree.fromstring(data, parser=_PARSER)
    except etree.XMLSyntaxError as exc:
        raise UnparsableResponse(f"Resposta não é XML válido: {exc}", body=data[:500].decode("utf-8", "replace")) from exc


def _find_body(root: etree._Element) -> etree._Element | None:
    for child in _children(root):
        if _localname(child) == "Body":
            return child
    return None


def find_fault(root: etree._Element) -> tuple[str, str] | None:
    """Return ``(code, message)`` for a SOAP 1.1 or 1.2 fault, if present."""

    body = _find_body(root)
    if body is None:
        return None
    fault = next((child for child in _children(body) if _localname(child) == "Fault"), None)
    if fault is None:
        return None

    code = ""
    message = ""
    for child in fault.iter():
        if not isinstance(child.tag, str):
            continue
        name = _localname(child)
        text = (child.text or "").strip()
        if name in ("faultcode", "Value") and text and not code:
            code = text
        elif name in ("faultstring", "Text") and text and not message:
            message = text
    return code or "soap:Fault", message or "SOAP Fault sem descrição"


def extract_result(raw: bytes | str, result_tags: str | Iterable[str]) -> etree._Element:
    """Return the result element (``retConsStatServ``, ``retEnvEvento``...).

    Raises
    ------
    AuthorityRejected
        When the envelope carries a SOAP fault.
    UnparsableResponse
        When neither the direct nor the wrapped shape contains the result.
    """

    tags = {result_tags} if isinstance(result_tags, str) else set(result_tags)
    root = parse_document(raw)

    if _localname(root) in tags:
        return root

    fault = find_fault(root)
    if fault is not None:
        code, message = fault
        raise AuthorityRejected(code, message, fault=True)

    body = _find_body(root)
    if body is None:
        raise UnparsableResponse(f"Resposta sem soap:Body (raiz {_localname(root)})")

    candidates = _children(body)
    for candidate in candidates:
        if _localname(candidate) in tags:
            return candidate

    # nfeResultMsg first, then any other single-level wrapper.
    for wrapper in sorted(candidates, key=lambda item: _localname(item) != RESPONSE_WRAPPER):
        for inner in _children(wrapper):
            if _localname(inner) in tags:
                return inner
            for nested in _children(inner):
                if _localname(nested) in tags:
                    return nested

    found = ", ".join(_localname(candidate) for candidate in candidates) or "vazio"
    raise UnparsableResponse(
        f"Elemento {' ou '.join(sorted(tags))} não encontrado na resposta (body: {found})",
        expected=sorted(tags),
    )


__all__ = [
    "SOAP11_NAMESPACE",
    "SOAP12_NAMESPACE",
    "REQUEST_WRAPPER",
    "RESPONSE_WRAPPER",
    "SoapVersion",
    "request_headers",
    "build_envelope",
    "parse_document",
    "find_fault",
    "extract_result",
]
