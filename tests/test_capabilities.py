"""Tests for client capability negotiation and resource attachment."""

from __future__ import annotations

from typing import Any

from mcp.types import (
    ClientCapabilities,
    EmbeddedResource,
    Implementation,
    InitializeRequestParams,
    ResourceLink,
    RootsCapability,
)

from sfcontext.capabilities import (
    AttachmentKind,
    CapabilityCache,
    ClientCapabilitySet,
    attach_resource,
)


class _Session:
    def __init__(self, client_params: InitializeRequestParams | None) -> None:
        self.client_params = client_params


RESOURCE: dict[str, Any] = {
    "uri": "mcp://server/state/snapshot.json",
    "name": "snapshot.json",
    "mimeType": "application/json",
    "description": "State snapshot",
    "text": '{"ok": true}',
}


def _params(
    version: str = "2025-06-18",
    *,
    roots: bool = False,
    experimental: dict[str, dict[str, Any]] | None = None,
    name: str = "test-client",
) -> InitializeRequestParams:
    return InitializeRequestParams(
        protocolVersion=version,
        capabilities=ClientCapabilities(
            roots=RootsCapability(listChanged=True) if roots else None,
            experimental=experimental,
        ),
        clientInfo=Implementation(name=name, version="1.2.3"),
    )


class TestDerivation:
    def test_no_params(self) -> None:
        caps = ClientCapabilitySet.from_initialize_params(None)
        assert not caps.resource_links
        assert not caps.resources
        assert caps.client_name == "unknown"

    def test_current_protocol_supports_links(self) -> None:
        caps = ClientCapabilitySet.from_initialize_params(_params("2025-06-18", roots=True))
        assert caps.resource_links
        assert caps.resources
        assert caps.roots
        assert caps.roots_list_changed
        assert caps.client_name == "test-client"
        assert caps.client_version == "1.2.3"

    def test_older_protocol_embeds_only(self) -> None:
        caps = ClientCapabilitySet.from_initialize_params(_params("2025-03-26"))
        assert not caps.resource_links
        assert caps.resources

    def test_experimental_enables_links(self) -> None:
        caps = ClientCapabilitySet.from_initialize_params(_params("2025-03-26", experimental={"resource_links": {}}))
        assert caps.resource_links is True

    def test_experimental_disables(self) -> None:
        caps = ClientCapabilitySet.from_initialize_params(
            _params(
                "2025-06-18",
                experimental={"resource_links": {"enabled": False}, "resources": {"enabled": False}},
            )
        )
        assert caps.resource_links is False
        assert caps.resources is False

    def test_to_dict(self) -> None:
        data = ClientCapabilitySet.from_initialize_params(_params()).to_dict()
        assert data["client"] == {"name": "test-client", "version": "1.2.3"}
        assert data["protocol_version"] == "2025-06-18"


class TestAttach:
    def test_link_preferred(self) -> None:
        content: list[Any] = []
        kind = attach_resource(content, RESOURCE, ClientCapabilitySet(resource_links=True, resources=True))
        assert kind is AttachmentKind.LINK
        assert isinstance(content[0], ResourceLink)
        assert str(content[0].uri) == RESOURCE["uri"]

    def test_inline_when_no_links(self) -> None:
        content: list[Any] = []
        kind = attach_resource(content, RESOURCE, ClientCapabilitySet(resources=True))
        assert kind is AttachmentKind.INLINE
        assert isinstance(content[0], EmbeddedResource)
        assert content[0].resource.text == RESOURCE["text"]

    def test_omitted(self) -> None:
        content: list[Any] = ["existing"]
        kind = attach_resource(content, RESOURCE, ClientCapabilitySet())
        assert kind is AttachmentKind.OMITTED
        assert content == ["existing"]


class TestCache:
    def test_cached_per_session(self) -> None:
        cache = CapabilityCache()
        session = _Session(_params())
        first = cache.for_session(session)
        session.client_params = _params("2024-11-05")
        assert cache.for_session(session) is first

    def test_uninitialized_session_not_cached(self) -> None:
        cache = CapabilityCache()
        session = _Session(None)
        assert not cache.for_session(session).resources
        session.client_params = _params()
        assert cache.for_session(session).resource_links
