"""Hook contract: descriptor inspection and the normalised capability map."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from flowhooks.events import event_value, handler_names_for, is_handler_name, method_name_to_event

HookHandler = Callable[[Any], Any]

MISSING = object()

# Attribute names that may carry descriptor properties.
PROPERTY_ALIASES: dict[str, tuple[str, ...]] = {
    "events": ("events",),
    "handlers": ("handlers",),
    "timeout": ("timeout",),
    "per_event_timeouts": ("per_event_timeouts", "perEventTimeouts"),
    "version": ("version",),
    "description": ("description",),
    "store_results": ("store_results",),
}


@dataclass
class DescriptorView:
    """Read-only view of a raw descriptor, before any validation."""

    source: Any
    is_mapping: bool
    properties: dict[str, Any]
    # handler name (or event key for mapping ``handlers``) -> candidate
    candidates: dict[str, Any]

    def get(self, key: str, default: Any = MISSING) -> Any:
        for alias in PROPERTY_ALIASES.get(key, (key,)):
            if alias in self.properties:
                return self.properties[alias]
        return default

    def handler_candidate(self, event: str) -> tuple[str, Any]:
        """Return ``(name, candidate)`` for ``event``; candidate is MISSING when absent."""
        if event in self.candidates:
            return event, self.candidates[event]
        camel, snake = handler_names_for(event)
        for name in (camel, snake):
            if name in self.candidates:
                return name, self.candidates[name]
        return camel, MISSING

    def handler_events(self) -> dict[str, str]:
        """Map every callable handler candidate name to the event it serves."""
        mapping: dict[str, str] = {}
        for name, candidate in self.candidates.items():
            if not callable(candidate):
                continue
            event = method_name_to_event(name) if is_handler_name(name) else name
            if event:
                mapping[name] = event
        return mapping


def _public_attributes(obj: Any) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    for name in dir(obj):
        if name.startswith("_"):
            continue
        try:
            value = getattr(obj, name)
        except Exception:  # noqa: BLE001 - broken descriptors surface as missing properties
            continue
        properties[name] = value
    return properties


def inspect_descriptor(obj: Any) -> DescriptorView:
    if isinstance(obj, Mapping):
        properties = {str(key): value for key, value in obj.items()}
        candidates: dict[str, Any] = {}
        handlers = properties.get("handlers")
        if isinstance(handlers, Mapping):
            candidates.update({event_value(key): value for key, value in handlers.items()})
        for key, value in properties.items():
            if is_handler_name(key):
                candidates[key] = value
        properties = {key: value for key, value in properties.items() if not is_handler_name(key)}
        return DescriptorView(source=obj, is_mapping=True, properties=properties, candidates=candidates)

    attributes = _public_attributes(obj)
    candidates = {name: value for name, value in attributes.items() if is_handler_name(name)}
    explicit = attributes.get("handlers")
    if isinstance(explicit, Mapping):
        candidates.update({event_value(key): value for key, value in explicit.items()})
    properties = {
        name: value
        for name, value in attributes.items()
        if not is_handler_name(name) and not callable(value)
    }
    return DescriptorView(source=obj, is_mapping=False, properties=properties, candidates=candidates)


@dataclass
class HookDescriptor:
    """Capability map built once at validation time.

    ``handlers`` maps each declared event to its callable, so dispatch never
    has to look handlers up by name.
    """

    events: tuple[str, ...]
    handlers: dict[str, HookHandler] = field(default_factory=dict)
    timeout_ms: float | None = None
    per_event_timeouts: dict[str, float] = field(default_factory=dict)
    version: str | None = None
    description: str = ""
    store_results: bool = False
    source: Any = None

    def declares(self, event: str) -> bool:
        return event_value(event) in self.events

    def handler_for(self, event: str) -> HookHandler | None:
        return self.handlers.get(event_value(event))

    def timeout_for(self, event: str, default_ms: float) -> float:
        override = self.per_event_timeouts.get(event_value(event))
        if override is not None:
            return override
        if self.timeout_ms is not None:
            return self.timeout_ms
        return default_ms


def build_descriptor(view: DescriptorView) -> HookDescriptor:
    """Build the capability map from a view that already passed validation."""
    events = tuple(dict.fromkeys(event_value(event) for event in view.get("events", ())))
    handlers: dict[str, HookHandler] = {}
    for event in events:
        _, candidate = view.handler_candidate(event)
        if candidate is not MISSING and callable(candidate):
            handlers[event] = candidate

    timeout = view.get("timeout", None)
    per_event = view.get("per_event_timeouts", None) or {}
    version = view.get("version", None)
    description = view.get("description", "")
    return HookDescriptor(
        events=events,
        handlers=handlers,
        timeout_ms=float(timeout) if timeout is not None else None,
        per_event_timeouts={str(key): float(value) for key, value in dict(per_event).items()},
        version=version,
        description=description if isinstance(description, str) else "",
        store_results=bool(view.get("store_results", False)),
        source=view.source,
    )
