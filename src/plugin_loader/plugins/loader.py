"""Loading of plugin and experiment definitions from Python modules.

A definition module is an ordinary Python file exposing either or both of:

- ``PLUGINS``: mapping of plugin name to plugin config dict
- ``EXPERIMENTS``: list of experiment config dicts (or `Experiment` objects)

Definitions are Python rather than JSON because rules may carry callables
(``special`` predicates, experiment ``apply`` functions, lifecycle hooks).
"""

import importlib.util
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..base.loggable import Loggable


class DefinitionLoader(Loggable):
    """Load definition modules from file paths with a simple in-memory cache.

    Each module is cached under a key derived from its name and path, so
    repeated lookups during start-up do not re-execute the file.
    """

    def __init__(self) -> None:
        super().__init__()
        self._loaded_modules: Dict[str, Any] = {}

    def load_module(self, module_name: str, file_path: Path) -> Any:
        """Dynamically load a Python module from a file path.

        Args:
            module_name: Name to assign to the loaded module.
            file_path: Filesystem path to the module source.

        Returns:
            Any: The loaded module object.

        Raises:
            ImportError: If a spec cannot be created for the file.
        """
        cache_key = f"{module_name}_{file_path}"
        if cache_key in self._loaded_modules:
            return self._loaded_modules[cache_key]

        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if not spec or not spec.loader:
            raise ImportError(f"Cannot load module from {file_path}")

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        self._loaded_modules[cache_key] = module
        return module

    def load_plugins(self, file_path: Optional[Union[str, Path]]) -> Dict[str, Dict[str, Any]]:
        """Return the ``PLUGINS`` mapping of a definition module.

        A missing path yields an empty mapping. Entries without a ``name``
        take their key as name.
        """
        if not file_path:
            return {}

        path = Path(file_path)
        module = self.load_module(f"plugin_definitions_{path.stem}", path)
        plugins = getattr(module, "PLUGINS", None) or {}

        result = {}
        for key, config in plugins.items():
            config = dict(config)
            config.setdefault("name", key)
            result[key] = config

        self.logger.info(f"Loaded {len(result)} plugin definitions from {path}")
        return result

    def load_experiments(self, file_path: Optional[Union[str, Path]]) -> List[Any]:
        """Return the ``EXPERIMENTS`` list of a definition module."""
        if not file_path:
            return []

        path = Path(file_path)
        module = self.load_module(f"experiment_definitions_{path.stem}", path)
        experiments = list(getattr(module, "EXPERIMENTS", None) or [])

        self.logger.info(f"Loaded {len(experiments)} experiment definitions from {path}")
        return experiments

    def clear_cache(self) -> None:
        """Clear the loaded modules cache."""
        self._loaded_modules.clear()
