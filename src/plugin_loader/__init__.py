"""Plugin loader package public API and version.

Exposes convenient imports for external consumers:
- `Settings`: runtime configuration
- `PluginOrchestrator`: plugin lifecycle state machine
- `ExperimentManager`: experiment bucketing and application
- `LoaderRuntime`: settings-driven wiring of a page session
- `PubSub`: event bus
"""

__version__ = "1.0.0"

from .config.settings import Settings
from .core.orchestrator import PluginOrchestrator
from .core.runtime import LoaderRuntime
from .events.pubsub import PubSub
from .experiments.manager import ExperimentManager

__all__ = [
    "Settings",
    "PluginOrchestrator",
    "ExperimentManager",
    "LoaderRuntime",
    "PubSub",
]
