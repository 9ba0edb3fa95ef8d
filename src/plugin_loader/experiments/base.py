"""Experiment model."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

FULL_RANGE: Tuple[int, int] = (0, 99)


def _noop(descriptor: Any) -> None:
    return None


@dataclass
class Experiment:
    """An A/B test that mutates a plugin descriptor before it is targeted.

    Args:
        id: Unique experiment id.
        active: Inactive experiments are never applied nor counted eligible.
        test_range: Inclusive ``(min, max)`` bucket range over 0..99.
        plugin: Name of the plugin the experiment targets; None = global.
        include: Targeting include rules evaluated against the page context.
        exclude: Targeting exclude rules.
        apply: Mutates the descriptor in place when the user is in range.
    """

    id: str
    active: bool = True
    test_range: Tuple[int, int] = FULL_RANGE
    plugin: Optional[str] = None
    include: Dict[str, Any] = field(default_factory=dict)
    exclude: Dict[str, Any] = field(default_factory=dict)
    apply: Callable[[Any], Any] = _noop

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "Experiment":
        """Build an experiment from a raw mapping (``testRange`` alias accepted).

        Raises:
            ValueError: If the config has no ``id``.
        """
        experiment_id = config.get("id")
        if not experiment_id:
            raise ValueError("Experiment must have an id")

        test_range = config.get("test_range", config.get("testRange")) or FULL_RANGE
        low, high = test_range
        apply = config.get("apply")

        return cls(
            id=experiment_id,
            active=config.get("active") is not False,
            test_range=(int(low), int(high)),
            plugin=config.get("plugin") or None,
            include=dict(config.get("include") or {}),
            exclude=dict(config.get("exclude") or {}),
            apply=apply if callable(apply) else _noop,
        )

    def in_range(self, testgroup: int) -> bool:
        low, high = self.test_range
        return low <= testgroup <= high
