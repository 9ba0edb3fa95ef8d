"""Experiment management for plugin loading.

Experiments modify plugin descriptors before targeting runs. Each session
gets one bucket (``testgroup``) in 0..99 for its whole lifetime; an
experiment applies when the bucket falls inside its inclusive test range,
otherwise the session is recorded as eligible (control group).
"""

import random
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..base.loggable import Loggable
from ..core.targeting import DimensionConfig, evaluate_targeting, normalize_targeting_config
from .base import Experiment

BUCKET_COUNT = 100


class ExperimentManager(Loggable):
    """Registry, bucketing and application of experiments.

    Attributes:
        testgroup: The session bucket, fixed at construction.
        active: Master switch; an inactive manager applies nothing.
        registry: Experiments by id, in registration order.
        applied: Ids applied so far, one entry per application.
        eligible: Ids matched but out of range so far, one entry per check.
    """

    def __init__(
        self,
        testgroup: Optional[int] = None,
        active: bool = True,
        get_context: Optional[Callable[[], Mapping[str, Any]]] = None,
        dimension_config: Optional[DimensionConfig] = None,
    ) -> None:
        super().__init__()
        if testgroup is None:
            testgroup = random.randrange(BUCKET_COUNT)
        if not 0 <= testgroup < BUCKET_COUNT:
            raise ValueError(f"testgroup must be in 0..{BUCKET_COUNT - 1}, got {testgroup}")

        self.testgroup = testgroup
        self.active = active
        self.get_context = get_context or dict
        self.dimension_config = dimension_config if dimension_config is not None else {}

        self.registry: Dict[str, Experiment] = {}
        self.applied: List[str] = []
        self.eligible: List[str] = []

    def register(self, experiment: Union[Experiment, Mapping[str, Any]]) -> bool:
        """Register an experiment, replacing any previous one with the same id.

        Args:
            experiment: An `Experiment` or a raw config mapping.

        Returns:
            bool: False if the experiment has no id.
        """
        if not isinstance(experiment, Experiment):
            try:
                experiment = Experiment.from_config(experiment)
            except ValueError as e:
                self.logger.warning(f"Experiment not registered: {e}")
                return False
        elif not experiment.id:
            self.logger.warning("Experiment not registered: Experiment must have an id")
            return False

        self.registry[experiment.id] = experiment
        return True

    def unregister(self, experiment_id: str) -> None:
        """Remove an experiment; unknown ids are ignored."""
        self.registry.pop(experiment_id, None)

    def is_in_experiment(self, experiment_id: str) -> bool:
        """Return True if the session bucket is inside the experiment's range."""
        if not self.active:
            return False

        experiment = self.registry.get(experiment_id)
        if experiment is None or not experiment.active:
            return False

        return experiment.in_range(self.testgroup)

    def targeting_matches(self, experiment: Experiment) -> bool:
        """Evaluate the experiment's own include/exclude against the context."""
        if not experiment.include and not experiment.exclude:
            return True

        targeting = normalize_targeting_config(experiment.include, experiment.exclude)
        result = evaluate_targeting(
            targeting["include"],
            targeting["exclude"],
            self.get_context(),
            self.dimension_config,
        )
        return result.matched

    def apply(self, plugin_name: Optional[str] = None, descriptor: Any = None) -> None:
        """Apply matching experiments to ``descriptor``.

        With a ``plugin_name`` only experiments targeting that plugin are
        considered; without one only global experiments (no ``plugin``) are.
        Experiments whose targeting does not match are skipped entirely.

        Args:
            plugin_name: Plugin being loaded, or None for a global pass.
            descriptor: Object handed to each experiment's ``apply``.
        """
        if not self.active:
            return

        for experiment_id, experiment in list(self.registry.items()):
            if plugin_name:
                is_match = experiment.plugin == plugin_name
            else:
                is_match = not experiment.plugin

            if not (experiment.active and is_match):
                continue

            if not self.targeting_matches(experiment):
                continue

            if self.is_in_experiment(experiment_id):
                try:
                    experiment.apply(descriptor)
                    self.applied.append(experiment_id)
                    self.logger.info(f"Experiment {experiment_id} applied")
                except Exception as e:
                    self.logger.error(f"Experiment '{experiment_id}' apply() threw error: {e}")
            else:
                self.eligible.append(experiment_id)

    def get_status(self) -> Dict[str, Any]:
        """Return ``{"testgroup", "applied", "eligible"}`` for reporting."""
        return {
            "testgroup": self.testgroup,
            "applied": list(self.applied),
            "eligible": list(self.eligible),
        }

    def get_targeting_ids(self) -> List[str]:
        """Return applied ids suffixed ``_a`` followed by eligible ids suffixed ``_e``."""
        return [f"{experiment_id}_a" for experiment_id in self.applied] + [
            f"{experiment_id}_e" for experiment_id in self.eligible
        ]

    def reset(self) -> None:
        """Forget applied/eligible tracking."""
        self.applied = []
        self.eligible = []

    def clear(self) -> None:
        """Remove every experiment and reset tracking."""
        self.registry = {}
        self.reset()
