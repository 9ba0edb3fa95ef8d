"""Logging mixin shared by the stateful classes of the plugin loader."""

import logging


class Loggable:
    """Provide a `logger` named after the concrete class.

    The logger name is ``<module>.<ClassName>`` so log output can be filtered
    per component (e.g. ``plugin_loader.core.orchestrator.PluginOrchestrator``).
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(
            f"{self.__class__.__module__}.{self.__class__.__name__}"
        )
