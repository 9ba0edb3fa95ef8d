"""Plugin config validation.

Checks the structure of raw plugin configs before they are normalised.
Script content is never fetched or inspected here.
"""

from typing import Any, List, Mapping

from ..base.loggable import Loggable
from ..core.targeting import SPECIAL, WILDCARD
from .base import FIELD_ALIASES, LOCATIONS, canonicalize_config


class PluginValidator(Loggable):
    """Structural validator for raw plugin configs.

    Errors are returned as messages rather than raised so callers can decide
    whether a problem is fatal. A missing ``url`` is reported as a warning
    only: such a plugin still goes through its gates and ends as ``ignore``.
    """

    def __init__(self) -> None:
        super().__init__()
        self.known_fields = {
            "name",
            "id",
            "url",
            "type",
            "location",
            "async_",
            "timeout_ms",
            "attributes",
            "active",
            "domains",
            "consent_state",
            "include",
            "exclude",
            "preload",
            "onload",
            "onerror",
            "ontimeout",
            "onignore",
            "status",
        }

    def validate_config(self, config: Mapping[str, Any]) -> List[str]:
        """Validate a raw plugin config.

        Args:
            config: Plugin config; aliased keys are accepted.

        Returns:
            List[str]: Validation error messages; empty if valid.
        """
        if not isinstance(config, Mapping):
            return [f"Plugin config must be a mapping, got {type(config).__name__}"]

        errors: List[str] = []
        values = canonicalize_config(config)
        name = values.get("name")

        if not name:
            errors.append("Missing required field: name")

        if not values.get("url"):
            self.logger.warning(f"Plugin {name or '?'} has no url and will be ignored")

        location = str(values.get("location") or "body").lower()
        if location not in LOCATIONS:
            errors.append(
                f"Invalid location '{location}', expected one of {', '.join(LOCATIONS)}"
            )

        timeout = values.get("timeout_ms")
        if timeout is not None and (
            isinstance(timeout, bool)
            or not isinstance(timeout, (int, float))
            or timeout <= 0
        ):
            errors.append(f"Invalid timeout: {timeout!r}")

        errors.extend(self._validate_attributes(values.get("attributes")))

        for key in ("include", "exclude"):
            errors.extend(self._validate_rules(key, values.get(key)))

        for key in ("domains", "consent_state"):
            errors.extend(self._validate_list(key, values.get(key)))

        unknown = set(values) - self.known_fields - set(FIELD_ALIASES)
        if unknown:
            self.logger.warning(
                f"Plugin {name or '?'} has unknown fields: {sorted(unknown)}"
            )

        return errors

    @staticmethod
    def _validate_attributes(attributes: Any) -> List[str]:
        if attributes is None or isinstance(attributes, Mapping):
            return []
        if isinstance(attributes, (str, bytes)):
            return ["attributes must be a mapping or a list of key/value pairs"]

        errors = []
        for index, pair in enumerate(attributes):
            if isinstance(pair, (str, bytes)) or len(pair) != 2:
                errors.append(f"attributes[{index}] is not a key/value pair")
        return errors

    @staticmethod
    def _validate_list(key: str, value: Any) -> List[str]:
        if value is None or value == WILDCARD:
            return []
        if isinstance(value, (list, tuple, set, frozenset)):
            return []
        return [f"{key} must be a list or '{WILDCARD}'"]

    @staticmethod
    def _validate_rules(key: str, rules: Any) -> List[str]:
        if rules is None:
            return []
        if not isinstance(rules, Mapping):
            return [f"{key} must be a mapping of dimension to rules"]

        errors = []
        for dimension, value in rules.items():
            if dimension == SPECIAL:
                if not callable(value):
                    errors.append(f"{key}.{SPECIAL} must be callable")
                continue
            if value == WILDCARD or isinstance(value, (list, tuple, set, frozenset)):
                continue
            errors.append(f"{key}.{dimension} must be a list or '{WILDCARD}'")
        return errors
