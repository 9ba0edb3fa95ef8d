"""Plugin orchestration: the lifecycle state machine behind ``load``.

Every ``load`` walks a descriptor through a fixed sequence of gates:

  normalise -> URL override -> active -> consent -> domain -> experiments
  -> targeting -> execute -> {loaded | error | timeout}

Short-circuits end in ``inactive`` or ``ignore``. A denied consent check parks
the load in the consent queue until `PluginOrchestrator.process_consent_queue`
finds consent granted; the load then resumes from the domain gate.

Descriptors live in ``plugins`` keyed by name for the whole session. Loading a
name again reuses the stored descriptor, so mutations from URL overrides,
experiments and ignore transitions carry over to later loads. While a load for
a name is in flight, further ``load`` calls for that name await the same
result instead of starting a second one.

The executor and the timeout alarm race to settle a requested load. Only the
first report is honoured: every handler checks that the descriptor is still
``requested`` before transitioning.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..base.loggable import Loggable
from ..events.pubsub import PubSub
from ..executor.page import Page
from ..executor.script import ScriptExecutor
from ..plugins.base import DEFAULT_TIMEOUT_MS, PluginDescriptor, PluginStatus
from ..plugins.validator import PluginValidator
from .consent import AllowAllConsent, CallableConsent, ConsentOracle
from .state import (
    EVENT_COMPLETE,
    EVENT_CONSENT_PENDING,
    EVENT_ERROR,
    EVENT_IGNORE,
    EVENT_INACTIVE,
    EVENT_LOAD,
    EVENT_OVERRIDE_DISABLED,
    EVENT_OVERRIDE_ENABLED,
    EVENT_TIMEOUT,
    LoadResult,
    PendingLoad,
)
from .targeting import (
    WILDCARD,
    DimensionConfig,
    evaluate_targeting,
    matches_domain,
    normalize_targeting_config,
)
from .timer import calculate_latency, timer

PluginConfig = Union[PluginDescriptor, Mapping[str, Any]]


class PluginOrchestrator(Loggable):
    """Decide whether, when and how each plugin's script is loaded.

    Args:
        page: Page supplying the host, the query-string overrides and the
            debug marker.
        executor: Attaches tags and reports load success or failure.
        event_bus: Receives ``<event_prefix>.<name>.<event>`` topics.
        dimensions: Context providers, dimension name -> zero-argument getter
            (plain values are used as-is).
        dimension_config: Per-dimension ``{"matchType": ...}``.
        consent: Consent oracle, or a plain ``func(states) -> bool``.
        experiments: Optional `ExperimentManager` applied before targeting.
        event_prefix: First segment of every published topic.
        debug_param: Marker in the page URL that raises debug-log verbosity.
        enable_param: Query parameter listing force-enabled plugins.
        disable_param: Query parameter listing force-disabled plugins.
        default_timeout_ms: Timeout for descriptors that declare none.
    """

    def __init__(
        self,
        page: Page,
        executor: ScriptExecutor,
        event_bus: PubSub,
        dimensions: Optional[Mapping[str, Any]] = None,
        dimension_config: Optional[DimensionConfig] = None,
        consent: Union[ConsentOracle, Callable[[List[str]], bool], None] = None,
        experiments: Any = None,
        event_prefix: str = "plugin",
        debug_param: str = "pluginDebug",
        enable_param: str = "pluginEnable",
        disable_param: str = "pluginDisable",
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        super().__init__()
        self.page = page
        self.executor = executor
        self.event_bus = event_bus
        self.dimensions: Dict[str, Any] = dict(dimensions or {})
        self.dimension_config: Dict[str, Any] = dict(dimension_config or {})
        self.consent = self._as_oracle(consent)
        self.experiments = experiments
        self.event_prefix = event_prefix
        self.debug_param = debug_param
        self.enable_param = enable_param
        self.disable_param = disable_param
        self.default_timeout_ms = default_timeout_ms
        self.validator = PluginValidator()

        self.plugins: Dict[str, PluginDescriptor] = {}
        self.metrics: Dict[str, Dict[str, Any]] = {}
        self.consent_queue: List[PendingLoad] = []
        self.logs: List[Tuple[int, str, Any]] = []

        self._inflight: Dict[str, PendingLoad] = {}

    @staticmethod
    def _as_oracle(consent: Any) -> ConsentOracle:
        if consent is None:
            return AllowAllConsent()
        if hasattr(consent, "check"):
            return consent
        if callable(consent):
            return CallableConsent(consent)
        raise TypeError(f"Unsupported consent oracle: {consent!r}")

    def is_debug_enabled(self) -> bool:
        return self.debug_param in self.page.url

    def log(self, msg: str = "", data: Any = None, force_console: bool = False) -> None:
        """Record a debug entry; emitted at INFO only in debug mode or when forced."""
        ts = timer()
        self.logs.append((ts, msg, data))

        level = logging.INFO if force_console or self.is_debug_enabled() else logging.DEBUG
        if data is not None:
            self.logger.log(level, f"[{ts}] {msg} {data}")
        else:
            self.logger.log(level, f"[{ts}] {msg}")

    def set_experiments(self, experiment_manager: Any) -> None:
        self.experiments = experiment_manager

    def get_context(self) -> Dict[str, Any]:
        """Call every dimension getter; a failing getter yields None."""
        context: Dict[str, Any] = {}
        for key, getter in self.dimensions.items():
            try:
                context[key] = getter() if callable(getter) else getter
            except Exception as e:
                self.log(f'Dimension "{key}" threw error', e)
                self.logger.error(f"Dimension {key} failed: {e}")
                context[key] = None
        return context

    def get_url_overrides(self) -> Dict[str, List[str]]:
        """Return the ``enable``/``disable`` plugin lists from the page query."""
        enable = [name for name in self.page.get_param(self.enable_param).split(",") if name]
        disable = [name for name in self.page.get_param(self.disable_param).split(",") if name]
        return {"enable": enable, "disable": disable}

    def check_url_override(self, name: str) -> Dict[str, bool]:
        """Return ``{"override", "enabled"}`` for a plugin name.

        ``disable=all`` disables everything not listed in ``enable``; otherwise
        an explicit enable beats an explicit disable.
        """
        overrides = self.get_url_overrides()
        enable, disable = overrides["enable"], overrides["disable"]

        if WILDCARD in disable:
            return {"override": True, "enabled": name in enable}
        if name in enable:
            return {"override": True, "enabled": True}
        if name in disable:
            return {"override": True, "enabled": False}
        return {"override": False, "enabled": True}

    def check_consent(self, required_states: Optional[List[str]]) -> bool:
        """Ask the oracle unless nothing (or ``"all"``) is required.

        An oracle that raises counts as a denial.
        """
        if not required_states or WILDCARD in required_states:
            return True
        try:
            return bool(self.consent.check(list(required_states)))
        except Exception as e:
            self.logger.error(f"Consent check failed for {required_states}: {e}")
            return False

    def normalize_plugin_config(self, config: PluginConfig) -> PluginDescriptor:
        """Return a fresh descriptor for ``config`` with defaults applied.

        Raises:
            ValueError: If the config has no name.
        """
        if isinstance(config, PluginDescriptor):
            if not config.event_title:
                config.event_title = f"{self.event_prefix}.{config.name}"
            return config

        errors = self.validator.validate_config(config)
        if errors:
            self.logger.warning(f"Plugin config {config.get('name', '?')} has problems: {errors}")

        return PluginDescriptor.from_config(
            config,
            event_prefix=self.event_prefix,
            default_timeout_ms=self.default_timeout_ms,
        )

    def register(self, config: PluginConfig) -> PluginDescriptor:
        """Store a normalised descriptor with status ``init`` without loading it."""
        descriptor = self.normalize_plugin_config(config)
        self.plugins[descriptor.name] = descriptor
        return descriptor

    def get_plugin(self, name: str) -> Optional[PluginDescriptor]:
        return self.plugins.get(name)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Return a copy of the latest performance record per plugin."""
        return {name: dict(record) for name, record in self.metrics.items()}

    async def load(self, config: PluginConfig) -> LoadResult:
        """Run a plugin through its gates and wait for the outcome.

        The returned result always settles exactly once, except for a plugin
        waiting on consent, which stays pending until consent is granted and
        `process_consent_queue` runs.

        Args:
            config: Raw config mapping or descriptor. Only the name is used
                when a descriptor with that name already exists.

        Returns:
            LoadResult: Status, name, performance and, where relevant, the
            ignore reason or executor error.
        """
        name = config.name if isinstance(config, PluginDescriptor) else config.get("name")

        inflight = self._inflight.get(name) if name else None
        if inflight is not None and not inflight.settled:
            self.log(f"{name}: load already in progress, waiting for it")
            return await asyncio.shield(inflight.future)

        descriptor = self.plugins.get(name) if name else None
        if descriptor is None:
            descriptor = self.normalize_plugin_config(config)
        self.plugins[descriptor.name] = descriptor

        pending = PendingLoad(
            descriptor=descriptor,
            future=asyncio.get_running_loop().create_future(),
        )
        self._inflight[descriptor.name] = pending

        self._run_gates(pending)
        return await asyncio.shield(pending.future)

    def _run_gates(self, pending: PendingLoad) -> None:
        plugin = pending.descriptor

        url_override = self.check_url_override(plugin.name)
        if url_override["override"]:
            if url_override["enabled"]:
                plugin.include = {}
                plugin.exclude = {}
                plugin.domains = [WILDCARD]
                plugin.consent_state = [WILDCARD]
                self.publish_event(plugin.name, EVENT_OVERRIDE_ENABLED)
            else:
                plugin.active = False
                self.publish_event(plugin.name, EVENT_OVERRIDE_DISABLED)

        if plugin.active is not True:
            self._handle_inactive(pending)
            return

        if not self.check_consent(plugin.consent_state):
            self._set_status(plugin, PluginStatus.CONSENT_PENDING)
            self.consent_queue.append(pending)
            self.log(f"{plugin.name}: waiting for consent", plugin.consent_state)
            self.publish_event(plugin.name, EVENT_CONSENT_PENDING)
            return

        self._run_targeting(pending)

    def _run_targeting(self, pending: PendingLoad) -> None:
        plugin = pending.descriptor

        if not matches_domain(plugin.domains, self.page.host):
            self._handle_ignore(pending, "Domain mismatch")
            return

        # Experiments run before targeting so they can rewrite the rules.
        if self.experiments is not None:
            self.experiments.apply(plugin.name, plugin)
            if plugin.active is not True:
                self._handle_inactive(pending)
                return

        targeting = normalize_targeting_config(plugin.include, plugin.exclude)
        result = evaluate_targeting(
            targeting["include"],
            targeting["exclude"],
            self.get_context(),
            self.dimension_config,
        )

        if not result.matched:
            self._handle_ignore(pending, result.reason)
            return

        self._execute_load(pending)

    def _execute_load(self, pending: PendingLoad) -> None:
        plugin = pending.descriptor

        if not plugin.url:
            self._handle_ignore(pending, "No URL provided")
            return

        self._set_status(plugin, PluginStatus.REQUESTED)
        plugin.performance.requested = timer()

        plugin.performance.preload = timer()
        self._call_hook(plugin, "preload")

        try:
            plugin.tag = self.executor.execute(
                plugin,
                lambda: self._on_script_load(pending),
                lambda error: self._on_script_error(pending, error),
            )
        except Exception as e:
            self.logger.error(f"Executor failed to start {plugin.name}: {e}")
            self._on_script_error(pending, e)
            return

        if plugin.status is PluginStatus.REQUESTED and not pending.settled:
            pending.alarm = asyncio.get_running_loop().call_later(
                plugin.timeout_ms / 1000, self._on_timeout, pending
            )

    def _on_script_load(self, pending: PendingLoad) -> None:
        plugin = pending.descriptor
        if plugin.status is not PluginStatus.REQUESTED or pending.settled:
            self.log(f"{plugin.name}: late load report ignored")
            return

        self._cancel_alarm(pending)
        plugin.performance.received = timer()
        self._finish(pending, PluginStatus.LOADED, EVENT_LOAD, hook="onload")

    def _on_script_error(self, pending: PendingLoad, error: BaseException) -> None:
        plugin = pending.descriptor
        if plugin.status is not PluginStatus.REQUESTED or pending.settled:
            self.log(f"{plugin.name}: late error report ignored", error)
            return

        self._cancel_alarm(pending)
        plugin.performance.error = timer()
        self._finish(
            pending,
            PluginStatus.ERROR,
            EVENT_ERROR,
            hook="onerror",
            hook_args=(error,),
            extra_result={"error": error},
        )

    def _on_timeout(self, pending: PendingLoad) -> None:
        plugin = pending.descriptor
        pending.alarm = None
        if plugin.status is not PluginStatus.REQUESTED or pending.settled:
            return

        plugin.performance.timeout = timer()
        self._finish(pending, PluginStatus.TIMEOUT, EVENT_TIMEOUT, hook="ontimeout")

    def _handle_inactive(self, pending: PendingLoad) -> None:
        self._finish(pending, PluginStatus.INACTIVE, EVENT_INACTIVE)

    def _handle_ignore(self, pending: PendingLoad, reason: str) -> None:
        pending.descriptor.active = False
        self._finish(
            pending,
            PluginStatus.IGNORE,
            EVENT_IGNORE,
            hook="onignore",
            hook_args=(reason,),
            event_data={"reason": reason},
            extra_result={"reason": reason},
        )

    def _finish(
        self,
        pending: PendingLoad,
        status: PluginStatus,
        event: str,
        hook: Optional[str] = None,
        hook_args: Tuple[Any, ...] = (),
        event_data: Optional[Dict[str, Any]] = None,
        extra_result: Optional[Dict[str, Any]] = None,
    ) -> None:
        plugin = pending.descriptor

        self._set_status(plugin, status)
        plugin.performance.latency = calculate_latency(plugin.performance)
        self.update_metrics(plugin)

        if hook:
            self._call_hook(plugin, hook, *hook_args)

        self.publish_event(plugin.name, event, event_data)
        self.publish_event(plugin.name, EVENT_COMPLETE)

        result: LoadResult = {
            "status": status.value,
            "name": plugin.name,
            "performance": plugin.performance.to_dict(),
        }
        result.update(extra_result or {})
        self.log(f"{plugin.name}: {status.value}", result.get("reason"))

        if self._inflight.get(plugin.name) is pending:
            del self._inflight[plugin.name]
        if not pending.future.done():
            pending.future.set_result(result)

    def process_consent_queue(self) -> List[str]:
        """Resume queued loads whose consent is now granted.

        Resumed loads restart at the domain gate, so experiments and targeting
        see the current page context. Loads still lacking consent stay queued.

        Returns:
            List[str]: Names of the plugins that were resumed.
        """
        queue = self.consent_queue
        self.consent_queue = []
        resumed: List[str] = []

        for pending in queue:
            if pending.settled:
                continue
            if self.check_consent(pending.descriptor.consent_state):
                resumed.append(pending.descriptor.name)
                self._run_targeting(pending)
            else:
                self.consent_queue.append(pending)

        if resumed:
            self.log("Consent granted, resumed plugins", resumed)
        return resumed

    def update_metrics(self, plugin: PluginDescriptor) -> None:
        self.metrics[plugin.name] = plugin.performance.to_dict()

    def publish_event(self, name: str, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Publish ``<event_prefix>.<name>.<event>`` with ``{name, event, **data}``."""
        payload = {"name": name, "event": event}
        payload.update(data or {})
        self.event_bus.publish(f"{self.event_prefix}.{name}.{event}", payload)

    @staticmethod
    def _set_status(plugin: PluginDescriptor, status: PluginStatus) -> None:
        plugin.status = status
        plugin.performance.status = status.value

    def _call_hook(self, plugin: PluginDescriptor, hook: str, *args: Any) -> None:
        try:
            getattr(plugin, hook)(*args)
        except Exception as e:
            self.logger.error(f"{plugin.name}.{hook} hook failed: {e}")

    @staticmethod
    def _cancel_alarm(pending: PendingLoad) -> None:
        if pending.alarm is not None:
            pending.alarm.cancel()
            pending.alarm = None

    def teardown(self) -> None:
        """Cancel alarms and pending loads, remove injected tags, clear state."""
        for pending in list(self._inflight.values()) + self.consent_queue:
            self._cancel_alarm(pending)
            if not pending.future.done():
                pending.future.cancel()

        for plugin in self.plugins.values():
            if plugin.tag is not None:
                try:
                    self.executor.remove(plugin.tag)
                except Exception as e:
                    self.logger.error(f"Failed to remove tag for {plugin.name}: {e}")
                plugin.tag = None

        self._inflight.clear()
        self.consent_queue = []
        self.plugins = {}
        self.metrics = {}
        self.logger.info("Orchestrator torn down")
