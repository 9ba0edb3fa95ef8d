"""Example plugin definitions.

Load with ``PLUGIN_LOADER_PLUGINS_FILE=definitions/plugins.py``.
"""

import re

BOT_PATTERN = re.compile(r"bot|crawler|spider", re.IGNORECASE)

# Set by the embedding application; read by the premium feature exclusion.
USER_AGENT = {"value": ""}


def is_bot() -> bool:
    return bool(BOT_PATTERN.search(USER_AGENT["value"]))


PLUGINS = {
    # Loads on all pages
    "analytics": {
        "name": "analytics",
        "active": True,
        "url": "https://cdn.jsdelivr.net/npm/js-cookie@3.0.5/dist/js.cookie.min.js",
        "domains": ["all"],
        "include": {"section": ["all"], "pagetype": ["all"], "geo": ["all"]},
        "exclude": {},
    },
    # Section-restricted
    "sportsWidget": {
        "name": "sportsWidget",
        "active": True,
        "url": "https://cdn.jsdelivr.net/npm/dayjs@1.11.10/dayjs.min.js",
        "domains": ["all"],
        "include": {
            "section": ["sport", "football", "cricket"],
            "pagetype": ["all"],
            "geo": ["all"],
        },
        "exclude": {"section": ["sport/betting"]},
    },
    # Geo-restricted and consent-gated
    "ukTracker": {
        "name": "ukTracker",
        "active": True,
        "url": "https://cdn.jsdelivr.net/npm/uuid@9.0.0/dist/umd/uuid.min.js",
        "domains": ["all"],
        "consent_state": ["analytics"],
        "include": {"section": ["all"], "pagetype": ["all"], "geo": ["gb"]},
        "exclude": {},
    },
    # Custom exclusion logic
    "premiumFeature": {
        "name": "premiumFeature",
        "active": True,
        "url": "https://cdn.jsdelivr.net/npm/lodash@4.17.21/lodash.min.js",
        "domains": ["all"],
        "include": {"section": ["all"], "pagetype": ["all"], "geo": ["all"]},
        "exclude": {"special": is_bot},
    },
}
