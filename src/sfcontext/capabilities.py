"""Client capability negotiation.

A :class:`ClientCapabilitySet` is derived once per connection from the
client's initialize request and is immutable afterwards.  Tool handlers
never attach resources themselves; they call :func:`attach_resource`, which
picks the richest shape the client can render.
"""

from __future__ import annotations

import enum
import logging
import weakref
from collections.abc import Mapping, MutableSequence
from dataclasses import dataclass
from typing import Any

from mcp.types import EmbeddedResource, InitializeRequestParams, ResourceLink, TextResourceContents

logger = logging.getLogger(__name__)

# Protocol revision that introduced resource_link content blocks.
RESOURCE_LINKS_SINCE = "2025-06-18"
# First published protocol revision; embedded resources exist since then.
EMBEDDED_RESOURCES_SINCE = "2024-11-05"


class AttachmentKind(enum.StrEnum):
    LINK = "link"
    INLINE = "inline"
    OMITTED = "omitted"


def _version_at_least(version: str | None, minimum: str) -> bool:
    # Protocol versions are ISO dates, so string order is date order.
    return isinstance(version, str) and len(version) == len(minimum) and version >= minimum


def _experimental_flag(value: Any) -> bool:
    # Declared as an object; ``{"enabled": false}`` switches the feature off.
    if isinstance(value, Mapping):
        return bool(value.get("enabled", True))
    return bool(value)


@dataclass(frozen=True)
class ClientCapabilitySet:
    resource_links: bool = False
    resources: bool = False
    roots: bool = False
    roots_list_changed: bool = False
    sampling: bool = False
    elicitation: bool = False
    client_name: str = "unknown"
    client_version: str = "unknown"
    protocol_version: str | None = None

    @classmethod
    def from_initialize_params(cls, params: InitializeRequestParams | None) -> ClientCapabilitySet:
        """Derive the capability flags from an initialize request.

        ``experimental`` entries named ``resource_links`` / ``resources`` may
        switch a flag on or off explicitly; otherwise the protocol version
        decides.
        """
        if params is None:
            return cls()
        caps = params.capabilities
        experimental: Mapping[str, Any] = caps.experimental or {}
        protocol_version = str(params.protocolVersion) if params.protocolVersion is not None else None

        resource_links = _version_at_least(protocol_version, RESOURCE_LINKS_SINCE)
        resources = _version_at_least(protocol_version, EMBEDDED_RESOURCES_SINCE)
        if "resource_links" in experimental:
            resource_links = _experimental_flag(experimental["resource_links"])
        if "resources" in experimental:
            resources = _experimental_flag(experimental["resources"])

        return cls(
            resource_links=resource_links,
            resources=resources,
            roots=caps.roots is not None,
            roots_list_changed=bool(caps.roots and caps.roots.listChanged),
            sampling=caps.sampling is not None,
            elicitation=getattr(caps, "elicitation", None) is not None,
            client_name=params.clientInfo.name or "unknown",
            client_version=params.clientInfo.version or "unknown",
            protocol_version=protocol_version,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "client": {"name": self.client_name, "version": self.client_version},
            "protocol_version": self.protocol_version,
            "resource_links": self.resource_links,
            "resources": self.resources,
            "roots": self.roots,
            "roots_list_changed": self.roots_list_changed,
            "sampling": self.sampling,
            "elicitation": self.elicitation,
        }


def attach_resource(
    content: MutableSequence[Any],
    resource: Mapping[str, Any],
    capabilities: ClientCapabilitySet,
) -> AttachmentKind:
    """Append *resource* to *content* in the shape the client can consume.

    *resource* carries ``uri``, ``name``, ``mimeType``, ``description`` and
    optionally ``text``.  Omission is a normal outcome: the same data stays
    reachable through the ``serverContextUtils`` tool.
    """
    uri = resource["uri"]
    name = resource.get("name") or uri
    mime_type = resource.get("mimeType")
    description = resource.get("description")

    if capabilities.resource_links:
        content.append(
            ResourceLink(type="resource_link", uri=uri, name=name, mimeType=mime_type, description=description)
        )
        logger.debug("Attached resource link for %s", name)
        return AttachmentKind.LINK

    if capabilities.resources:
        content.append(
            EmbeddedResource(
                type="resource",
                resource=TextResourceContents(uri=uri, mimeType=mime_type, text=resource.get("text") or ""),
            )
        )
        logger.debug("Attached inline resource for %s (client lacks resource links)", name)
        return AttachmentKind.INLINE

    logger.debug("Skipped resource attachment for %s (client supports neither links nor resources)", name)
    return AttachmentKind.OMITTED


class CapabilityCache:
    """Per-connection capability sets, keyed weakly by session object."""

    def __init__(self) -> None:
        self._by_session: weakref.WeakKeyDictionary[Any, ClientCapabilitySet] = weakref.WeakKeyDictionary()

    def for_session(self, session: Any) -> ClientCapabilitySet:
        cached = self._by_session.get(session)
        if cached is not None:
            return cached
        params = getattr(session, "client_params", None)
        capabilities = ClientCapabilitySet.from_initialize_params(params)
        if params is not None:
            # Only cache once the client has actually initialized.
            self._by_session[session] = capabilities
            logger.info(
                "Client %s (v%s) connected, protocol %s",
                capabilities.client_name,
                capabilities.client_version,
                capabilities.protocol_version or "unknown",
                extra={"args_data": capabilities.to_dict()},
            )
        return capabilities
