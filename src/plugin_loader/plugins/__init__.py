"""Plugin system exports.

Exposes:
- `PluginDescriptor`, `PluginStatus`: normalised plugin record and its states
- `PluginValidator`: structural checks on raw plugin configs
- `DefinitionLoader`: loading of plugin/experiment definition modules
"""

from .base import PluginDescriptor, PluginStatus
from .loader import DefinitionLoader
from .validator import PluginValidator

__all__ = [
    "PluginDescriptor",
    "PluginStatus",
    "PluginValidator",
    "DefinitionLoader",
]
