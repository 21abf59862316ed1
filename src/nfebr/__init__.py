"""Top level package for the NF-e / NFC-e client tools.

The submodules cover the access key codec, fiscal event rules, message
building, endpoint resolution, the SOAP transport and contingency handling.
:class:`nfebr.client.DocumentClient` ties them together.
"""

__all__ = [
    "access_key",
    "cli",
    "client",
    "config",
    "contingency",
    "endpoints",
    "errors",
    "events",
    "logging",
    "messages",
    "regions",
    "responses",
    "soap",
    "status_codes",
    "transport",
]
