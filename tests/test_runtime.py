"""Tests for settings, definition loading and the runtime wiring."""

import logging

import pytest
from pydantic import ValidationError

from conftest import DEFINITIONS_DIR, FakeExecutor
from plugin_loader.config.settings import Settings
from plugin_loader.core.runtime import LoaderRuntime
from plugin_loader.events.pubsub import PubSub
from plugin_loader.executor.page import Page
from plugin_loader.plugins.loader import DefinitionLoader

PLUGINS_FILE = str(DEFINITIONS_DIR / "plugins.py")
EXPERIMENTS_FILE = str(DEFINITIONS_DIR / "experiments.py")


def make_settings(**overrides):
    values = dict(
        page_url="https://www.example.com/news/story",
        testgroup=5,
        plugins_file=PLUGINS_FILE,
        experiments_file=EXPERIMENTS_FILE,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def context():
    return {"section": "news", "pagetype": "article", "geo": "gb"}


@pytest.fixture
def make_runtime(context):
    def factory(settings=None, **kwargs):
        settings = settings or make_settings()
        page = Page(settings.page_url)
        options = dict(
            page=page,
            executor=FakeExecutor(page),
            dimensions={key: (lambda key=key: context[key]) for key in context},
        )
        options.update(kwargs)
        return LoaderRuntime(settings, **options)

    return factory


class TestSettings:
    def test_defaults(self):
        settings = Settings()

        assert settings.event_prefix == "plugin"
        assert settings.ready_topic == "cmp.ready"
        assert settings.default_timeout_ms == 3000
        assert settings.testgroup is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PLUGIN_LOADER_TESTGROUP", "42")
        monkeypatch.setenv("PLUGIN_LOADER_EVENT_PREFIX", "ext")

        settings = Settings()

        assert settings.testgroup == 42
        assert settings.event_prefix == "ext"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"testgroup": 100},
            {"event_prefix": "plugin."},
            {"dimension_config": {"section": {"matchType": "regex"}}},
            {"plugins_file": "does/not/exist.py"},
            {"default_timeout_ms": 0},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValidationError):
            Settings(**overrides)


class TestDefinitionLoader:
    def test_load_plugins(self):
        plugins = DefinitionLoader().load_plugins(PLUGINS_FILE)

        assert list(plugins) == ["analytics", "sportsWidget", "ukTracker", "premiumFeature"]
        assert all(config["name"] == key for key, config in plugins.items())
        assert callable(plugins["premiumFeature"]["exclude"]["special"])

    def test_load_experiments(self):
        experiments = DefinitionLoader().load_experiments(EXPERIMENTS_FILE)
        assert [e["id"] for e in experiments] == [
            "analytics_v2_test",
            "sports_widget_football_holdout",
        ]

    def test_modules_are_cached(self):
        loader = DefinitionLoader()

        first = loader.load_module("defs", DEFINITIONS_DIR / "plugins.py")
        assert loader.load_module("defs", DEFINITIONS_DIR / "plugins.py") is first

        loader.clear_cache()
        assert loader.load_module("defs", DEFINITIONS_DIR / "plugins.py") is not first

    def test_missing_path_yields_nothing(self):
        loader = DefinitionLoader()
        assert loader.load_plugins(None) == {}
        assert loader.load_experiments(None) == []

    def test_name_defaults_to_key(self, tmp_path):
        path = tmp_path / "defs.py"
        path.write_text('PLUGINS = {"keyed": {"url": "https://cdn.example.com/k.js"}}\n')

        plugins = DefinitionLoader().load_plugins(path)

        assert plugins["keyed"]["name"] == "keyed"


class TestLoaderRuntime:
    """End-to-end runs over the bundled definitions."""

    def test_configure_registers_definitions(self, make_runtime):
        runtime = make_runtime()
        runtime.configure()

        assert list(runtime.orchestrator.plugins) == [
            "analytics",
            "sportsWidget",
            "ukTracker",
            "premiumFeature",
        ]
        assert list(runtime.experiments.registry) == [
            "analytics_v2_test",
            "sports_widget_football_holdout",
        ]
        assert all(
            p.status.value == "init" for p in runtime.orchestrator.plugins.values()
        )

    def test_configure_with_explicit_definitions(self, make_runtime):
        runtime = make_runtime()
        runtime.configure(
            plugins={"only": {"url": "https://cdn.example.com/only.js"}}, experiments=[]
        )

        assert list(runtime.plugin_configs) == ["only"]
        assert runtime.experiments.registry == {}

    @pytest.mark.asyncio
    async def test_waits_for_ready_topic(self, make_runtime):
        runtime = make_runtime()
        runtime.configure()
        runtime.start()

        assert runtime.started is False
        assert runtime.tasks == {}

        runtime.publish_ready()
        results = await runtime.wait(timeout=0.3)

        assert runtime.started is True
        assert results["analytics"]["status"] == "loaded"
        assert results["sportsWidget"]["status"] == "ignore"
        assert results["sportsWidget"]["reason"] == "Not included by section: news"
        assert results["premiumFeature"]["status"] == "loaded"
        assert "ukTracker" not in results
        assert runtime.pending() == ["ukTracker"]

        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_experiment_applies_in_bucket(self, make_runtime):
        runtime = make_runtime()
        runtime.configure()
        runtime.start()
        runtime.publish_ready()
        await runtime.wait(timeout=0.3)

        analytics = runtime.orchestrator.get_plugin("analytics")
        assert analytics.url == "https://cdn.example.com/analytics-v2.min.js"
        assert runtime.experiments.get_targeting_ids() == ["analytics_v2_test_a"]

        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_consent_grant_resumes_queued_plugin(self, make_runtime):
        runtime = make_runtime()
        runtime.configure()
        runtime.start()
        runtime.publish_ready()
        await runtime.wait(timeout=0.3)

        assert runtime.grant_consent(["analytics"]) == ["ukTracker"]
        results = await runtime.wait(timeout=1)

        assert results["ukTracker"]["status"] == "loaded"
        assert runtime.pending() == []

        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_consent_granted_at_start_up(self, make_runtime):
        runtime = make_runtime(make_settings(consent_granted=["analytics"]))
        runtime.configure()
        runtime.start()
        runtime.publish_ready()

        results = await runtime.wait(timeout=1)

        assert results["ukTracker"]["status"] == "loaded"
        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_ready_topic_already_published(self, make_runtime):
        bus = PubSub()
        bus.publish("cmp.ready")
        runtime = make_runtime(event_bus=bus)
        runtime.configure()

        runtime.start()

        assert runtime.started is True
        assert set(runtime.tasks) == {"analytics", "sportsWidget", "ukTracker", "premiumFeature"}
        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_no_ready_topic_loads_immediately(self, make_runtime):
        runtime = make_runtime(make_settings(ready_topic=""))
        runtime.configure()

        runtime.start()

        assert runtime.started is True
        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_ready_runs_once(self, make_runtime):
        runtime = make_runtime()
        runtime.configure()
        runtime.start()

        runtime.publish_ready()
        runtime.publish_ready()
        await runtime.wait(timeout=0.3)

        assert sorted(runtime.executor.requested) == ["analytics", "premiumFeature"]
        await runtime.aclose()

    @pytest.mark.asyncio
    async def test_load_unknown_plugin(self, make_runtime):
        runtime = make_runtime()
        runtime.configure(plugins={}, experiments=[])

        with pytest.raises(KeyError):
            runtime.load("missing")

    @pytest.mark.asyncio
    async def test_aclose_cancels_pending_loads(self, make_runtime):
        runtime = make_runtime()
        runtime.configure()
        runtime.start()
        runtime.publish_ready()
        await runtime.wait(timeout=0.3)
        pending = runtime.tasks["ukTracker"]

        await runtime.aclose()

        assert pending.cancelled()
        assert runtime.orchestrator.plugins == {}
        assert runtime.page.body == []

    @pytest.mark.asyncio
    async def test_each_outcome_is_logged_once(self, make_runtime, caplog):
        caplog.set_level(logging.DEBUG, logger="plugin_loader")
        runtime = make_runtime()
        runtime.configure()
        runtime.start()
        runtime.publish_ready()
        await runtime.wait(timeout=0.3)

        records = [r.getMessage() for r in caplog.records]

        assert sum("analytics: loaded" in msg for msg in records) == 1
        assert sum("sportsWidget: ignore" in msg for msg in records) == 1
        assert runtime.results["analytics"]["status"] == "loaded"
        await runtime.aclose()
