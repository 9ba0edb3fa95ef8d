"""Example experiment definitions.

Each experiment:
- id: unique identifier
- active: enable/disable
- testRange: [min, max] user buckets 0-99 (e.g. [0, 24] = 25% of users)
- plugin: target plugin name, or None for a global experiment
- include/exclude: targeting rules (same shape as plugins)
- apply: mutates the plugin descriptor before targeting runs

Load with ``PLUGIN_LOADER_EXPERIMENTS_FILE=definitions/experiments.py``.
"""

import logging

logger = logging.getLogger(__name__)


def use_analytics_v2(plugin):
    plugin.url = "https://cdn.example.com/analytics-v2.min.js"
    logger.info("[Experiment] analytics_v2_test applied")


def hold_out_sports_widget(plugin):
    plugin.active = False
    logger.info("[Experiment] sports_widget_football_holdout applied")


EXPERIMENTS = [
    # New analytics endpoint for 25% of users
    {
        "id": "analytics_v2_test",
        "active": True,
        "testRange": [0, 24],
        "plugin": "analytics",
        "include": {"section": ["all"], "pagetype": ["all"], "geo": ["all"]},
        "exclude": {},
        "apply": use_analytics_v2,
    },
    # Hold the sports widget back on football pages for 50% of users
    {
        "id": "sports_widget_football_holdout",
        "active": False,
        "testRange": [0, 49],
        "plugin": "sportsWidget",
        "include": {"section": ["football"], "pagetype": ["all"], "geo": ["all"]},
        "exclude": {},
        "apply": hold_out_sports_widget,
    },
]
