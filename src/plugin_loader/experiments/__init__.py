"""Experiment exports.

Exposes:
- `Experiment`: A/B test definition
- `ExperimentManager`: bucketing and application of experiments
"""

from .base import Experiment
from .manager import ExperimentManager

__all__ = ["Experiment", "ExperimentManager"]
