"""Settings-driven wiring of the plugin loader.

`LoaderRuntime` builds the event bus, page, executor, consent store,
orchestrator and experiment manager from `Settings`, registers the configured
experiments and plugins, and loads every plugin once the ready topic has been
published.
"""

import asyncio
from functools import partial
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..base.loggable import Loggable
from ..config.settings import Settings
from ..events.pubsub import PubSub
from ..executor.page import Page
from ..executor.script import HttpScriptExecutor
from ..experiments.manager import ExperimentManager
from ..plugins.loader import DefinitionLoader
from .consent import ConsentStore
from .orchestrator import PluginOrchestrator
from .state import LoadResult

# Delay before the experiment status is logged after a load-all pass.
EXPERIMENT_STATUS_DELAY = 0.1


class LoaderRuntime(Loggable):
    """Own one page session: collaborators, definitions and load tasks.

    Args:
        settings: Runtime configuration.
        dimensions: Context providers passed to the orchestrator.
        page: Page to serve; built from ``settings.page_url`` when omitted.
        event_bus: Event bus; a new `PubSub` when omitted.
        executor: Script executor; an `HttpScriptExecutor` when omitted.
        consent: Consent store; seeded from ``settings.consent_granted``.
    """

    def __init__(
        self,
        settings: Settings,
        dimensions: Optional[Mapping[str, Any]] = None,
        page: Optional[Page] = None,
        event_bus: Optional[PubSub] = None,
        executor: Any = None,
        consent: Optional[ConsentStore] = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.page = page or Page(settings.page_url)
        self.event_bus = event_bus or PubSub()
        self.executor = executor or HttpScriptExecutor(self.page)
        self.consent = consent or ConsentStore(settings.consent_granted)

        self.orchestrator = PluginOrchestrator(
            page=self.page,
            executor=self.executor,
            event_bus=self.event_bus,
            dimensions=dimensions,
            dimension_config=settings.dimension_config,
            consent=self.consent,
            event_prefix=settings.event_prefix,
            debug_param=settings.debug_param,
            enable_param=settings.enable_param,
            disable_param=settings.disable_param,
            default_timeout_ms=settings.default_timeout_ms,
        )
        self.experiments = ExperimentManager(
            testgroup=settings.testgroup,
            active=settings.experiments_enabled,
            get_context=self.orchestrator.get_context,
            dimension_config=self.orchestrator.dimension_config,
        )
        self.orchestrator.set_experiments(self.experiments)

        self.definition_loader = DefinitionLoader()
        self.plugin_configs: Dict[str, Mapping[str, Any]] = {}
        self.results: Dict[str, LoadResult] = {}
        self.tasks: Dict[str, asyncio.Task] = {}
        self.started = False

    def configure(
        self,
        plugins: Optional[Mapping[str, Mapping[str, Any]]] = None,
        experiments: Optional[Iterable[Any]] = None,
    ) -> None:
        """Register experiments and plugins.

        Definitions not passed explicitly are read from the modules named by
        ``settings.experiments_file`` and ``settings.plugins_file``.
        """
        if experiments is None:
            experiments = self.definition_loader.load_experiments(self.settings.experiments_file)
        for experiment in experiments:
            if self.experiments.register(experiment):
                experiment_id = experiment["id"] if isinstance(experiment, Mapping) else experiment.id
                registered = self.experiments.registry[experiment_id]
                self.orchestrator.log(
                    f"Registered experiment: {registered.id}",
                    {"active": registered.active, "testRange": list(registered.test_range)},
                )

        if plugins is None:
            plugins = self.definition_loader.load_plugins(self.settings.plugins_file)
        for key, config in plugins.items():
            config = dict(config)
            config.setdefault("name", key)
            descriptor = self.orchestrator.register(config)
            self.plugin_configs[descriptor.name] = config
        self.orchestrator.log(f"Registered {len(plugins)} plugins")

    def start(self) -> None:
        """Load all plugins now, or as soon as the ready topic is published.

        Must be called from a running event loop.
        """
        ready_topic = self.settings.ready_topic
        if not ready_topic:
            self._on_ready()
        elif self.event_bus.has_published(ready_topic):
            self.orchestrator.log(f"{ready_topic} already published, loading plugins")
            self._on_ready()
        else:
            self.orchestrator.log(f"Waiting for {ready_topic}")
            self.event_bus.subscribe(ready_topic, lambda _data: self._on_ready())

    def _on_ready(self, *_: Any) -> None:
        if self.started:
            return
        self.started = True
        self.load_all()

    def load_all(self) -> List[asyncio.Task]:
        """Start loading every configured plugin; returns the load tasks."""
        self.orchestrator.log(f"Initializing with {len(self.plugin_configs)} plugins")
        self.orchestrator.log(f"User testgroup: {self.experiments.testgroup}")

        tasks = [self.load(name) for name in self.plugin_configs]

        asyncio.get_running_loop().call_later(
            EXPERIMENT_STATUS_DELAY,
            lambda: self.orchestrator.log("Experiment status", self.experiments.get_status()),
        )
        return tasks

    def load(self, name: str) -> asyncio.Task:
        """Start loading one plugin by name in a background task.

        Raises:
            KeyError: If no plugin with that name is known.
        """
        config: Any = self.plugin_configs.get(name) or self.orchestrator.get_plugin(name)
        if config is None:
            raise KeyError(name)

        task = asyncio.get_running_loop().create_task(
            self.orchestrator.load(config), name=f"load:{name}"
        )
        task.add_done_callback(partial(self._record_result, name))
        self.tasks[name] = task
        return task

    def _record_result(self, name: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"Load of {name} failed: {error}")
            return

        self.results[name] = task.result()

    async def wait(self, timeout: Optional[float] = None) -> Dict[str, LoadResult]:
        """Wait up to ``timeout`` seconds for running loads; return results so far."""
        pending = [task for task in self.tasks.values() if not task.done()]
        if pending:
            await asyncio.wait(pending, timeout=timeout)
        return dict(self.results)

    def pending(self) -> List[str]:
        """Names of plugins whose load has not settled yet."""
        return [name for name, task in self.tasks.items() if not task.done()]

    def grant_consent(self, states: Iterable[str]) -> List[str]:
        """Grant consent tags and resume queued loads; returns resumed names."""
        self.consent.grant(*states)
        return self.orchestrator.process_consent_queue()

    def publish_ready(self) -> None:
        """Publish the ready topic (loads immediately when none is configured)."""
        if self.settings.ready_topic:
            self.event_bus.publish(self.settings.ready_topic)
        else:
            self._on_ready()

    async def aclose(self) -> None:
        """Tear down the orchestrator and release the executor."""
        self.orchestrator.teardown()
        for task in self.tasks.values():
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        aclose = getattr(self.executor, "aclose", None)
        if aclose is not None:
            await aclose()
