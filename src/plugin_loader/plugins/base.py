"""Plugin descriptor model for the plugin loader.

A `PluginDescriptor` is the normalised, mutable record describing one
third-party script together with its runtime state. Raw configs (plain
mappings, as found in definition modules or API payloads) are collapsed into
one canonical field per concept by `PluginDescriptor.from_config`.

Canonical fields, accepted aliases and defaults:

=================  ==============================  ====================
field              aliases                         default
=================  ==============================  ====================
``name``           (required)                      -
``id``                                             ``name``
``url``                                            ``None``
``type``                                           ``"js"``
``location``                                       ``"body"``
``async_``         ``async``                       ``True``
``timeout_ms``     ``timeoutMs``, ``timeout``      settings default
``attributes``                                     ``[]``
``active``                                         ``True``
``domains``                                        ``["all"]``
``consent_state``  ``consentState``, ``consent``   ``["all"]``
``include``                                        ``{}``
``exclude``                                        ``{}``
``preload``        ``preloadFn``                   no-op
``onload``         ``onloadFn``                    no-op
``onerror``        ``onerrorFn``                   no-op
``ontimeout``      ``timeoutFn``                   no-op
``onignore``       ``ignoreFn``                    no-op
``status``                                         ``"init"``
=================  ==============================  ====================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..core.targeting import as_rule_list
from ..core.timer import PerformanceRecord, create_performance_tracker

DEFAULT_TIMEOUT_MS = 3000
LOCATIONS = ("head", "body")


class PluginStatus(str, Enum):
    """Lifecycle states of a plugin descriptor."""

    INIT = "init"
    CONSENT_PENDING = "consent-pending"
    REQUESTED = "requested"
    LOADED = "loaded"
    ERROR = "error"
    TIMEOUT = "timeout"
    INACTIVE = "inactive"
    IGNORE = "ignore"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        PluginStatus.LOADED,
        PluginStatus.ERROR,
        PluginStatus.TIMEOUT,
        PluginStatus.INACTIVE,
        PluginStatus.IGNORE,
    }
)

# alias -> canonical field
FIELD_ALIASES: Dict[str, str] = {
    "async": "async_",
    "timeoutMs": "timeout_ms",
    "timeout": "timeout_ms",
    "consentState": "consent_state",
    "consent": "consent_state",
    "preloadFn": "preload",
    "onloadFn": "onload",
    "onerrorFn": "onerror",
    "timeoutFn": "ontimeout",
    "ignoreFn": "onignore",
}

HOOKS = ("preload", "onload", "onerror", "ontimeout", "onignore")


def _noop(*args: Any, **kwargs: Any) -> None:
    return None


def canonicalize_config(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Map aliased keys onto their canonical names.

    The canonical key wins when both forms are present; among aliases the
    first one listed in `FIELD_ALIASES` wins.
    """
    canonical: Dict[str, Any] = {}
    for key, value in config.items():
        if key not in FIELD_ALIASES:
            canonical[key] = value
    for alias, target in FIELD_ALIASES.items():
        if alias in config and target not in canonical:
            canonical[target] = config[alias]
    return canonical


def _attribute_pairs(attributes: Any) -> List[Tuple[str, str]]:
    if not attributes:
        return []
    if isinstance(attributes, Mapping):
        items = attributes.items()
    else:
        items = attributes
    return [(str(key), str(value)) for key, value in items]


def _rule_set(rules: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for dimension, value in (rules or {}).items():
        normalized[dimension] = value if dimension == "special" else as_rule_list(value)
    return normalized


@dataclass
class PluginDescriptor:
    """Normalised description of one loadable script and its runtime state.

    Args:
        name: Unique key of the plugin inside one orchestrator.
        id: Element id of the injected script tag.
        url: Script source; a missing URL makes the load end as ``ignore``.
        type: Script type label (``"js"``).
        location: ``"head"`` or ``"body"``.
        async_: Whether the tag is marked async.
        timeout_ms: Milliseconds to wait for the executor before timing out.
        attributes: Extra tag attributes, in order.
        active: False short-circuits the load to ``inactive``.
        domains: Allowed hosts, or ``["all"]``.
        consent_state: Required consent tags, or ``["all"]``.
        include: Include rules by dimension (see `core.targeting`).
        exclude: Exclude rules by dimension.
        preload/onload/onerror/ontimeout/onignore: Lifecycle hooks.
        event_title: ``"<event_prefix>.<name>"``, prefix of the plugin's topics.
    """

    name: str
    id: str = ""
    url: Optional[str] = None
    type: str = "js"
    location: str = "body"
    async_: bool = True
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    active: bool = True
    domains: List[str] = field(default_factory=lambda: ["all"])
    consent_state: List[str] = field(default_factory=lambda: ["all"])
    include: Dict[str, Any] = field(default_factory=dict)
    exclude: Dict[str, Any] = field(default_factory=dict)
    preload: Callable[..., Any] = _noop
    onload: Callable[..., Any] = _noop
    onerror: Callable[..., Any] = _noop
    ontimeout: Callable[..., Any] = _noop
    onignore: Callable[..., Any] = _noop
    status: PluginStatus = PluginStatus.INIT
    performance: PerformanceRecord = field(default_factory=create_performance_tracker)
    event_title: str = ""
    tag: Any = None

    def __post_init__(self) -> None:
        if not self.id:
            self.id = self.name

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        event_prefix: str = "plugin",
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> "PluginDescriptor":
        """Build a descriptor from a raw config mapping.

        Args:
            config: Raw plugin config; aliases are accepted (see module docs).
            event_prefix: Prefix for the descriptor's event topics.
            default_timeout_ms: Timeout used when the config has none.

        Returns:
            PluginDescriptor: A fresh descriptor with status ``init``.

        Raises:
            ValueError: If the config has no ``name``.
        """
        values = canonicalize_config(config)

        name = values.get("name")
        if not name:
            raise ValueError("Plugin config requires a name")

        hooks = {
            hook: values[hook] if callable(values.get(hook)) else _noop
            for hook in HOOKS
        }

        return cls(
            name=name,
            id=values.get("id") or name,
            url=values.get("url") or None,
            type=values.get("type") or "js",
            location=str(values.get("location") or "body").lower(),
            async_=values.get("async_") is not False,
            timeout_ms=values.get("timeout_ms") or default_timeout_ms,
            attributes=_attribute_pairs(values.get("attributes")),
            active=values.get("active") is not False,
            domains=as_rule_list(values.get("domains")) or ["all"],
            consent_state=as_rule_list(values.get("consent_state")) or ["all"],
            include=_rule_set(values.get("include")),
            exclude=_rule_set(values.get("exclude")),
            status=PluginStatus(values.get("status") or PluginStatus.INIT),
            event_title=f"{event_prefix}.{name}",
            **hooks,
        )

    def summary(self) -> Dict[str, Any]:
        """Return the JSON-safe part of the descriptor (no hooks or tag)."""
        return {
            "name": self.name,
            "id": self.id,
            "url": self.url,
            "type": self.type,
            "location": self.location,
            "async": self.async_,
            "timeout_ms": self.timeout_ms,
            "attributes": [list(pair) for pair in self.attributes],
            "active": self.active,
            "domains": list(self.domains),
            "consent_state": list(self.consent_state),
            "include": {k: v for k, v in self.include.items() if k != "special"},
            "exclude": {k: v for k, v in self.exclude.items() if k != "special"},
            "status": self.status.value,
            "performance": self.performance.to_dict(),
        }
