"""Handler registry: every tool, prompt and resource the server exposes.

Collaborator modules (``sfcontext.mcp_tools.*``) describe their handlers
with :class:`HandlerDescriptor` and are loaded during the
HANDLERS_REGISTERED phase.  The registry is sealed once the server is ready;
after that it is read-only, so request handlers can read it without locks.
"""

from __future__ import annotations

import copy
import enum
import logging
from collections.abc import Awaitable, Callable, Iterable, KeysView, ValuesView
from dataclasses import dataclass, field
from types import MappingProxyType, ModuleType
from typing import Any

from sfcontext.errors import (
    DuplicateNameError,
    HandlerNotFoundError,
    InvalidSchemaError,
    RegistryClosedError,
)
from sfcontext.validation import validate_handler_name, validate_input_schema

logger = logging.getLogger(__name__)

EMPTY_OBJECT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}

HandlerImpl = Callable[..., Awaitable[Any]]


class HandlerCategory(enum.StrEnum):
    TOOL = "tool"
    PROMPT = "prompt"
    RESOURCE = "resource"


@dataclass(frozen=True)
class HandlerDescriptor:
    name: str
    category: HandlerCategory
    input_schema: dict[str, Any] | None
    description: str
    implementation: HandlerImpl
    title: str | None = None
    # Resources only
    uri: str | None = None
    mime_type: str | None = None
    annotations: dict[str, Any] = field(default_factory=dict)


def tool(
    name: str,
    description: str,
    input_schema: dict[str, Any] | None,
    implementation: HandlerImpl,
    *,
    title: str | None = None,
    annotations: dict[str, Any] | None = None,
) -> HandlerDescriptor:
    return HandlerDescriptor(
        name=name,
        category=HandlerCategory.TOOL,
        input_schema=input_schema,
        description=description,
        implementation=implementation,
        title=title,
        annotations=annotations or {},
    )


def prompt(
    name: str,
    description: str,
    input_schema: dict[str, Any] | None,
    implementation: HandlerImpl,
    *,
    title: str | None = None,
) -> HandlerDescriptor:
    return HandlerDescriptor(
        name=name,
        category=HandlerCategory.PROMPT,
        input_schema=input_schema,
        description=description,
        implementation=implementation,
        title=title,
    )


def resource(
    name: str,
    uri: str,
    description: str,
    implementation: HandlerImpl,
    *,
    mime_type: str = "text/plain",
    title: str | None = None,
) -> HandlerDescriptor:
    """Describe a static resource.  Resources take no arguments."""
    return HandlerDescriptor(
        name=name,
        category=HandlerCategory.RESOURCE,
        input_schema=EMPTY_OBJECT_SCHEMA,
        description=description,
        implementation=implementation,
        title=title,
        uri=uri,
        mime_type=mime_type,
    )


class HandlerRegistry:
    """Insertion-ordered store of handler descriptors keyed by (category, name)."""

    def __init__(self) -> None:
        self._handlers: dict[HandlerCategory, dict[str, HandlerDescriptor]] = {c: {} for c in HandlerCategory}
        self._resource_uris: dict[str, str] = {}
        self._sealed = False

    # -- registration ------------------------------------------------------

    def register(self, descriptor: HandlerDescriptor) -> HandlerDescriptor:
        """Add *descriptor*.  Returns the stored (schema-normalized) copy.

        Raises RegistryClosedError after :meth:`seal`, DuplicateNameError if
        the (category, name) pair or resource URI is taken, and
        InvalidSchemaError for a missing or malformed input schema or name.
        """
        if self._sealed:
            raise RegistryClosedError(descriptor.name)

        category = HandlerCategory(descriptor.category)
        if category is HandlerCategory.RESOURCE:
            name_err = None if isinstance(descriptor.name, str) and descriptor.name.strip() else "name must be non-empty"
        else:
            name_err = validate_handler_name(descriptor.name, allow_dash=category is HandlerCategory.PROMPT)
        if name_err:
            raise InvalidSchemaError(str(descriptor.name), name_err)

        bucket = self._handlers[category]
        if descriptor.name in bucket:
            raise DuplicateNameError(category.value, descriptor.name)

        if category is HandlerCategory.RESOURCE:
            if not descriptor.uri:
                raise InvalidSchemaError(descriptor.name, "resources must declare a uri")
            if descriptor.uri in self._resource_uris:
                raise DuplicateNameError(category.value, descriptor.uri)

        schema = validate_input_schema(descriptor.name, descriptor.input_schema)
        stored = HandlerDescriptor(
            name=descriptor.name,
            category=category,
            input_schema=copy.deepcopy(schema),
            description=descriptor.description,
            implementation=descriptor.implementation,
            title=descriptor.title,
            uri=descriptor.uri,
            mime_type=descriptor.mime_type,
            annotations=dict(descriptor.annotations),
        )
        bucket[descriptor.name] = stored
        if stored.uri:
            self._resource_uris[stored.uri] = stored.name
        logger.debug("Registered %s %s", category.value, descriptor.name)
        return stored

    def register_many(self, descriptors: Iterable[HandlerDescriptor]) -> int:
        count = 0
        for descriptor in descriptors:
            self.register(descriptor)
            count += 1
        return count

    def register_module(self, module: ModuleType) -> int:
        """Register every descriptor returned by ``module.register()``."""
        factory = getattr(module, "register", None)
        if not callable(factory):
            msg = f"{module.__name__} does not define register()"
            raise TypeError(msg)
        return self.register_many(factory())

    def seal(self) -> None:
        """Refuse any further registration."""
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    # -- lookup ------------------------------------------------------------

    def lookup(self, category: HandlerCategory | str, name: str) -> HandlerDescriptor:
        category = HandlerCategory(category)
        try:
            return self._handlers[category][name]
        except KeyError:
            raise HandlerNotFoundError(category.value, name) from None

    def lookup_resource(self, uri: str) -> HandlerDescriptor:
        name = self._resource_uris.get(uri)
        if name is None:
            raise HandlerNotFoundError(HandlerCategory.RESOURCE.value, uri)
        return self._handlers[HandlerCategory.RESOURCE][name]

    def list_all(self, category: HandlerCategory | str) -> ValuesView[HandlerDescriptor]:
        """Live, read-only view of descriptors in registration order.

        Each iteration starts from the beginning, so the same view can be
        listed repeatedly.
        """
        return MappingProxyType(self._handlers[HandlerCategory(category)]).values()

    def names(self, category: HandlerCategory | str) -> KeysView[str]:
        return MappingProxyType(self._handlers[HandlerCategory(category)]).keys()

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._handlers.values())

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        category, name = key
        try:
            return name in self._handlers[HandlerCategory(category)]
        except ValueError:
            return False
