"""Shared state types for the plugin orchestrator."""

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from typing import TypedDict

    from ..plugins.base import PluginDescriptor
else:
    try:
        from typing_extensions import TypedDict
    except ImportError:
        from typing import TypedDict

# Topic suffixes published for every plugin: <event_prefix>.<name>.<event>
EVENT_LOAD = "load"
EVENT_ERROR = "error"
EVENT_TIMEOUT = "timeout"
EVENT_IGNORE = "ignore"
EVENT_INACTIVE = "inactive"
EVENT_OVERRIDE_ENABLED = "override.enabled"
EVENT_OVERRIDE_DISABLED = "override.disabled"
EVENT_CONSENT_PENDING = "consent.pending"
EVENT_COMPLETE = "complete"


class LoadResult(TypedDict, total=False):
    """Settled outcome of one ``load`` call.

    Fields:
    - status: Terminal status value (``loaded``, ``error``, ``timeout``,
      ``ignore`` or ``inactive``).
    - name: Plugin name.
    - reason: Why the plugin was ignored (``ignore`` only).
    - error: Exception reported by the executor (``error`` only).
    - performance: Snapshot of the plugin's performance record.
    """

    status: str
    name: str
    reason: str
    error: BaseException
    performance: Dict[str, Any]


@dataclass
class PendingLoad:
    """A descriptor paired with the future its ``load`` callers await.

    Consent-queue entries are `PendingLoad` instances; they stay queued until
    consent is granted or the orchestrator is torn down.
    """

    descriptor: "PluginDescriptor"
    future: "asyncio.Future[LoadResult]"
    alarm: Optional[asyncio.TimerHandle] = None

    @property
    def settled(self) -> bool:
        return self.future.done()
