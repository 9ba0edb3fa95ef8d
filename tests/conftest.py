import asyncio
import pathlib
import sys
from dataclasses import dataclass
from typing import Any, Callable, List

import pytest

# Ensure src/ (containing the 'plugin_loader' package) is on sys.path
SRC_ROOT = pathlib.Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from plugin_loader.core.consent import ConsentStore
from plugin_loader.core.orchestrator import PluginOrchestrator
from plugin_loader.events.pubsub import PubSub
from plugin_loader.executor.page import Page, ScriptTag
from plugin_loader.executor.script import build_tag

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
DEFINITIONS_DIR = REPO_ROOT / "definitions"


@dataclass
class ExecuteCall:
    descriptor: Any
    tag: ScriptTag
    on_load: Callable[[], Any]
    on_error: Callable[[BaseException], Any]


class FakeExecutor:
    """Script executor whose outcome is chosen by the test.

    ``mode`` is ``"load"`` or ``"error"`` to report on the next loop
    iteration, or ``"manual"`` to wait for `succeed`/`fail`.
    """

    def __init__(self, page: Page, mode: str = "load") -> None:
        self.page = page
        self.mode = mode
        self.calls: List[ExecuteCall] = []
        self.removed: List[ScriptTag] = []

    def execute(self, descriptor, on_load, on_error) -> ScriptTag:
        tag = build_tag(descriptor)
        self.page.attach(tag)
        self.calls.append(ExecuteCall(descriptor, tag, on_load, on_error))

        loop = asyncio.get_running_loop()
        if self.mode == "load":
            loop.call_soon(on_load)
        elif self.mode == "error":
            loop.call_soon(on_error, RuntimeError(f"failed to fetch {descriptor.url}"))
        return tag

    def remove(self, tag: ScriptTag) -> None:
        self.page.detach(tag)
        self.removed.append(tag)

    def succeed(self, index: int = -1) -> None:
        self.calls[index].on_load()

    def fail(self, error: BaseException, index: int = -1) -> None:
        self.calls[index].on_error(error)

    @property
    def requested(self) -> List[str]:
        return [call.descriptor.name for call in self.calls]


class EventRecorder:
    """Collect every event the orchestrator publishes for a prefix."""

    def __init__(self, bus: PubSub, prefix: str = "plugin") -> None:
        self.bus = bus
        self.prefix = prefix

    @property
    def topics(self) -> List[str]:
        return [t for t in self.bus.published_topics if t.startswith(f"{self.prefix}.")]

    def for_plugin(self, name: str) -> List[str]:
        head = f"{self.prefix}.{name}."
        return [t[len(head):] for t in self.topics if t.startswith(head)]


@pytest.fixture
def page():
    return Page("https://www.example.com/news/story")


@pytest.fixture
def bus():
    return PubSub()


@pytest.fixture
def events(bus):
    return EventRecorder(bus)


@pytest.fixture
def executor(page):
    return FakeExecutor(page)


@pytest.fixture
def consent():
    return ConsentStore()


@pytest.fixture
def context():
    """Mutable dimension values read by the orchestrator's getters."""
    return {"section": "news", "pagetype": "article", "geo": "gb"}


@pytest.fixture
def make_orchestrator(page, bus, executor, consent, context):
    def factory(**kwargs) -> PluginOrchestrator:
        dimensions = {key: (lambda key=key: context[key]) for key in context}
        options = dict(
            page=page,
            executor=executor,
            event_bus=bus,
            dimensions=dimensions,
            consent=consent,
        )
        options.update(kwargs)
        return PluginOrchestrator(**options)

    return factory


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()
