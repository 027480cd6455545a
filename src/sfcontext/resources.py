"""Resources published at runtime by tool handlers.

Static resources are registered like tools (see :mod:`sfcontext.registry`).
Dynamic ones (state snapshots, org details) go into a bounded
:class:`ResourceStore`; the oldest entry is evicted when the store is full.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import Any

from sfcontext.config import DEFAULT_MAX_RESOURCES
from sfcontext.sanitize import sanitize_sensitive_data
from sfcontext.state import ProcessState

logger = logging.getLogger(__name__)

ORG_DETAILS_URI = "mcp://org/orgAndUserDetail.json"


class ResourceStore:
    """Insertion-ordered resources keyed by URI.

    *on_change* is called with no arguments after every publish or clear
    that changed the listing; the MCP wiring uses it to notify clients.
    """

    def __init__(self, max_resources: int = DEFAULT_MAX_RESOURCES, on_change: Callable[[], None] | None = None) -> None:
        if max_resources < 1:
            msg = f"max_resources must be positive, got {max_resources}"
            raise ValueError(msg)
        self.max_resources = max_resources
        self.on_change = on_change
        self._resources: dict[str, dict[str, Any]] = {}

    def publish(
        self,
        uri: str,
        name: str,
        description: str,
        text: str,
        *,
        mime_type: str = "text/plain",
        annotations: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Store (or replace) the resource at *uri* and return it."""
        entry = {
            "uri": uri,
            "name": name,
            "description": description,
            "mimeType": mime_type,
            "text": text,
            "annotations": {**(annotations or {}), "lastModified": datetime.now(UTC).isoformat()},
        }
        # Republishing moves the entry to the newest position.
        self._resources.pop(uri, None)
        while len(self._resources) >= self.max_resources:
            oldest = next(iter(self._resources))
            del self._resources[oldest]
            logger.debug("Removed oldest resource %s to keep at most %d", oldest, self.max_resources)
        self._resources[uri] = entry
        logger.debug("Resource %s published", uri)
        self._changed()
        return dict(entry)

    def get(self, uri: str) -> dict[str, Any] | None:
        entry = self._resources.get(uri)
        return dict(entry) if entry is not None else None

    def clear(self) -> None:
        if not self._resources:
            return
        logger.debug("Clearing %d resources", len(self._resources))
        self._resources.clear()
        self._changed()

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter([dict(entry) for entry in self._resources.values()])

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, uri: object) -> bool:
        return uri in self._resources

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()


def publish_org_context(state: ProcessState, store: ResourceStore) -> dict[str, Any] | None:
    """Expose the sanitized org context as a JSON resource.

    Returns None (and publishes nothing) while the context is empty.
    """
    org_context = state.get().org_context
    if not org_context:
        return None
    text = json.dumps(sanitize_sensitive_data(org_context), indent=3, default=str)
    return store.publish(
        ORG_DETAILS_URI,
        "Org and user details",
        "Org and user details",
        text,
        mime_type="application/json",
    )
