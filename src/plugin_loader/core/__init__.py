"""Core orchestration exports.

Exposes:
- `evaluate_targeting` and friends: include/exclude rule evaluation
- `ConsentStore`: in-memory consent oracle
- `LoadResult`: settled outcome of a load
- `PluginOrchestrator`: the plugin lifecycle state machine
- `LoaderRuntime`: settings-driven wiring of bus, orchestrator and experiments
"""

from .consent import ConsentStore
from .state import LoadResult
from .targeting import evaluate_targeting, is_excluded, matches_domain, matches_rule
from .orchestrator import PluginOrchestrator
from .runtime import LoaderRuntime

__all__ = [
    "ConsentStore",
    "LoadResult",
    "PluginOrchestrator",
    "LoaderRuntime",
    "evaluate_targeting",
    "is_excluded",
    "matches_domain",
    "matches_rule",
]
