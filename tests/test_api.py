"""Tests for the HTTP inspection and control surface."""

import pytest
from fastapi.testclient import TestClient

from conftest import DEFINITIONS_DIR, FakeExecutor
from plugin_loader.api.routes import service_container
from plugin_loader.config.settings import Settings
from plugin_loader.core.runtime import LoaderRuntime
from plugin_loader.executor.page import Page
from plugin_loader.main import PluginLoaderApplication


@pytest.fixture
def settings():
    return Settings(
        page_url="https://www.example.com/news/story",
        testgroup=5,
        plugins_file=str(DEFINITIONS_DIR / "plugins.py"),
        experiments_file=str(DEFINITIONS_DIR / "experiments.py"),
    )


@pytest.fixture
def runtime(settings):
    context = {"section": "news", "pagetype": "article", "geo": "gb"}
    page = Page(settings.page_url)
    runtime = LoaderRuntime(
        settings,
        dimensions={key: (lambda key=key: context[key]) for key in context},
        page=page,
        executor=FakeExecutor(page),
    )
    runtime.configure()
    return runtime


@pytest.fixture
def client(settings, runtime):
    app = PluginLoaderApplication(settings, runtime=runtime).create_app()
    with TestClient(app) as client:
        yield client


class TestInfoRoutes:
    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "running"
        assert body["message"] == "Plugin Loader"
        assert body["plugins"] == 4

    def test_health(self, client):
        assert client.get("/api/v1/health").json() == {"status": "healthy"}

    def test_status_before_ready(self, client):
        body = client.get("/api/v1/status").json()

        assert body["status"] == "operational"
        assert body["started"] is False
        assert body["page_url"] == "https://www.example.com/news/story"
        assert body["registered_plugins"] == [
            "analytics",
            "sportsWidget",
            "ukTracker",
            "premiumFeature",
        ]
        assert body["consent_granted"] == []

    def test_runtime_not_initialized(self, monkeypatch):
        monkeypatch.setattr(service_container, "runtime", None)
        app = PluginLoaderApplication(Settings()).create_app()

        response = TestClient(app).get("/api/v1/plugins")

        assert response.status_code == 503


class TestPluginRoutes:
    def test_list_plugins(self, client):
        plugins = client.get("/api/v1/plugins").json()

        assert [p["name"] for p in plugins] == [
            "analytics",
            "sportsWidget",
            "ukTracker",
            "premiumFeature",
        ]
        assert all(p["status"] == "init" for p in plugins)

    def test_get_plugin(self, client):
        plugin = client.get("/api/v1/plugins/ukTracker").json()

        assert plugin["consent_state"] == ["analytics"]
        assert plugin["include"]["geo"] == ["gb"]

    def test_unknown_plugin(self, client):
        assert client.get("/api/v1/plugins/missing").status_code == 404
        assert client.post("/api/v1/plugins/missing/load").status_code == 404

    def test_load_plugin(self, client):
        body = client.post("/api/v1/plugins/analytics/load", params={"wait": 1}).json()

        assert body["status"] == "loaded"
        assert body["settled"] is True
        assert body["performance"]["status"] == "loaded"

    def test_load_ignored_plugin(self, client):
        body = client.post("/api/v1/plugins/sportsWidget/load", params={"wait": 1}).json()

        assert body["status"] == "ignore"
        assert body["reason"] == "Not included by section: news"

    def test_register_and_load(self, client):
        response = client.post(
            "/api/v1/plugins",
            json={
                "name": "chat",
                "url": "https://cdn.example.com/chat.js",
                "async": False,
                "location": "head",
                "include": {"pagetype": ["article"]},
            },
        )

        assert response.status_code == 201
        registered = response.json()
        assert registered["status"] == "init"
        assert registered["location"] == "head"

        body = client.post("/api/v1/plugins/chat/load", params={"wait": 1}).json()
        assert body["status"] == "loaded"

    def test_load_all(self, client):
        responses = client.post("/api/v1/plugins/load", params={"wait": 0.3}).json()
        by_name = {r["name"]: r for r in responses}

        assert by_name["analytics"]["status"] == "loaded"
        assert by_name["premiumFeature"]["status"] == "loaded"
        assert by_name["sportsWidget"]["status"] == "ignore"
        assert by_name["ukTracker"] == {
            "name": "ukTracker",
            "status": "consent-pending",
            "settled": False,
            "reason": None,
            "error": None,
            "performance": by_name["ukTracker"]["performance"],
        }

        metrics = client.get("/api/v1/metrics").json()
        assert set(metrics) == {"analytics", "premiumFeature", "sportsWidget"}


class TestControlRoutes:
    def test_ready_starts_loading(self, client):
        body = client.post("/api/v1/ready").json()

        assert body == {"status": "published", "topic": "cmp.ready", "started": True}
        assert client.get("/api/v1/status").json()["started"] is True

    def test_consent_resumes_queued_plugin(self, client):
        client.post("/api/v1/plugins/ukTracker/load", params={"wait": 0.1})
        status = client.get("/api/v1/status").json()
        assert status["consent_queue"] == ["ukTracker"]

        body = client.post("/api/v1/consent", json={"states": ["analytics"]}).json()

        assert body == {"granted": ["analytics"], "resumed": ["ukTracker"], "still_queued": []}

        loaded = client.post("/api/v1/plugins/ukTracker/load", params={"wait": 1}).json()
        assert loaded["status"] == "loaded"

    def test_experiment_status(self, client):
        client.post("/api/v1/plugins/analytics/load", params={"wait": 1})

        body = client.get("/api/v1/experiments").json()

        assert body["testgroup"] == 5
        assert body["applied"] == ["analytics_v2_test"]
        assert body["targeting_ids"] == ["analytics_v2_test_a"]
        assert body["registered"] == ["analytics_v2_test", "sports_widget_football_holdout"]
