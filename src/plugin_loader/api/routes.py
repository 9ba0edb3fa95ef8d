"""FastAPI routes and service wiring for the plugin loader.

Exposes HTTP endpoints for:

- Listing, registering and inspecting plugins
- Loading one plugin or all configured plugins
- Reading load metrics and experiment status
- Granting consent (which resumes consent-queued plugins)
- Publishing the ready topic and reporting overall status

Also provides `initialize_api()` to build the `LoaderRuntime` and wire it
into a shared service container.
"""

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..base.loggable import Loggable
from ..config.settings import Settings
from ..core.runtime import LoaderRuntime
from ..core.state import LoadResult
from ..plugins.base import PluginDescriptor


class PluginInfo(BaseModel):
    """Public information about a plugin descriptor."""

    name: str
    id: str
    url: Optional[str] = None
    location: str
    active: bool
    status: str
    domains: List[str]
    consent_state: List[str]
    include: Dict[str, Any]
    exclude: Dict[str, Any]
    performance: Dict[str, Any]


class PluginRegistration(BaseModel):
    """Request payload registering a plugin (rules as plain lists only)."""

    name: str
    url: Optional[str] = None
    id: Optional[str] = None
    location: str = "body"
    active: bool = True
    async_: bool = Field(default=True, alias="async")
    timeout_ms: Optional[int] = Field(default=None, ge=1)
    attributes: List[List[str]] = Field(default_factory=list)
    domains: List[str] = Field(default_factory=lambda: ["all"])
    consent_state: List[str] = Field(default_factory=lambda: ["all"])
    include: Dict[str, List[str]] = Field(default_factory=dict)
    exclude: Dict[str, List[str]] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class LoadResponse(BaseModel):
    """Outcome of a load request.

    Attributes:
        name: Plugin name.
        status: Terminal status, or the current one when still pending.
        settled: False while the load is waiting on consent or the network.
        reason: Ignore reason, if any.
        error: Executor error message, if any.
        performance: Performance record snapshot.
    """

    name: str
    status: str
    settled: bool
    reason: Optional[str] = None
    error: Optional[str] = None
    performance: Dict[str, Any] = Field(default_factory=dict)


class ConsentRequest(BaseModel):
    """Consent tags to grant."""

    states: List[str]


class ExperimentStatus(BaseModel):
    """Experiment bucketing snapshot."""

    testgroup: int
    applied: List[str]
    eligible: List[str]
    targeting_ids: List[str]
    registered: List[str]


class SystemStatus(BaseModel):
    """Aggregated runtime status snapshot."""

    status: str
    started: bool
    page_url: str
    registered_plugins: List[str]
    pending_plugins: List[str]
    consent_queue: List[str]
    consent_granted: List[str]


def _descriptor_info(descriptor: PluginDescriptor) -> PluginInfo:
    return PluginInfo(**{
        key: value
        for key, value in descriptor.summary().items()
        if key in PluginInfo.model_fields
    })


def _load_response(result: LoadResult) -> LoadResponse:
    error = result.get("error")
    return LoadResponse(
        name=result["name"],
        status=result["status"],
        settled=True,
        reason=result.get("reason"),
        error=str(error) if error is not None else None,
        performance=result.get("performance", {}),
    )


class APIServiceContainer(Loggable):
    """Container for the runtime shared by the routes.

    Accessors raise HTTP 503 if the runtime has not been initialized.
    """

    def __init__(self) -> None:
        super().__init__()
        self.runtime: Optional[LoaderRuntime] = None

    def initialize(self, runtime: LoaderRuntime) -> None:
        self.runtime = runtime
        self.logger.info("API services initialized")

    def get_runtime(self) -> LoaderRuntime:
        """Return the runtime or raise HTTP 503 if unavailable."""
        if not self.runtime:
            raise HTTPException(status_code=503, detail="Runtime not initialized")
        return self.runtime


# Global service container
service_container = APIServiceContainer()
router = APIRouter(prefix="/api/v1")


def get_runtime() -> LoaderRuntime:
    """FastAPI dependency providing the initialized runtime."""
    return service_container.get_runtime()


@router.get("/plugins", response_model=List[PluginInfo])
async def list_plugins(runtime: LoaderRuntime = Depends(get_runtime)):
    """List registered plugins with their current status."""
    return [
        _descriptor_info(descriptor)
        for descriptor in runtime.orchestrator.plugins.values()
    ]


@router.post("/plugins", response_model=PluginInfo, status_code=201)
async def register_plugin(
    registration: PluginRegistration, runtime: LoaderRuntime = Depends(get_runtime)
):
    """Register (or replace) a plugin without loading it."""
    config = registration.model_dump(exclude_none=True)
    descriptor = runtime.orchestrator.register(config)
    runtime.plugin_configs[descriptor.name] = config
    return _descriptor_info(descriptor)


@router.get("/plugins/{plugin_name}", response_model=PluginInfo)
async def get_plugin(plugin_name: str, runtime: LoaderRuntime = Depends(get_runtime)):
    """Return a plugin's descriptor summary.

    Raises:
        HTTPException: 404 if the plugin is not registered.
    """
    descriptor = runtime.orchestrator.get_plugin(plugin_name)
    if not descriptor:
        raise HTTPException(status_code=404, detail=f"Plugin {plugin_name} not found")
    return _descriptor_info(descriptor)


@router.post("/plugins/load", response_model=List[LoadResponse])
async def load_all_plugins(
    wait: float = 5.0, runtime: LoaderRuntime = Depends(get_runtime)
):
    """Load every configured plugin and wait up to ``wait`` seconds for outcomes."""
    runtime.started = True
    tasks = runtime.load_all()
    if tasks:
        await asyncio.wait(tasks, timeout=wait)

    responses = []
    for name in runtime.plugin_configs:
        task = runtime.tasks.get(name)
        if task is not None and task.done() and not task.cancelled() and not task.exception():
            responses.append(_load_response(task.result()))
        else:
            responses.append(_pending_response(runtime, name))
    return responses


@router.post("/plugins/{plugin_name}/load", response_model=LoadResponse)
async def load_plugin(
    plugin_name: str, wait: float = 5.0, runtime: LoaderRuntime = Depends(get_runtime)
):
    """Load one plugin and wait up to ``wait`` seconds for its outcome.

    Raises:
        HTTPException: 404 if the plugin is not registered.
    """
    try:
        task = runtime.load(plugin_name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Plugin {plugin_name} not found")

    done, _ = await asyncio.wait({task}, timeout=wait)
    if task in done and not task.cancelled() and not task.exception():
        return _load_response(task.result())
    return _pending_response(runtime, plugin_name)


def _pending_response(runtime: LoaderRuntime, name: str) -> LoadResponse:
    descriptor = runtime.orchestrator.get_plugin(name)
    if descriptor is None:
        return LoadResponse(name=name, status="unknown", settled=False)
    return LoadResponse(
        name=name,
        status=descriptor.status.value,
        settled=False,
        performance=descriptor.performance.to_dict(),
    )


@router.get("/metrics")
async def get_metrics(runtime: LoaderRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Return the latest performance record of every plugin that settled."""
    return runtime.orchestrator.get_metrics()


@router.get("/experiments", response_model=ExperimentStatus)
async def experiment_status(runtime: LoaderRuntime = Depends(get_runtime)):
    """Return the bucket, applied/eligible ids and ad-targeting ids."""
    experiments = runtime.experiments
    status = experiments.get_status()
    return ExperimentStatus(
        testgroup=status["testgroup"],
        applied=status["applied"],
        eligible=status["eligible"],
        targeting_ids=experiments.get_targeting_ids(),
        registered=list(experiments.registry),
    )


@router.post("/consent")
async def grant_consent(
    request: ConsentRequest, runtime: LoaderRuntime = Depends(get_runtime)
):
    """Grant consent tags and resume queued plugins that now qualify."""
    resumed = runtime.grant_consent(request.states)
    return {
        "granted": runtime.consent.granted,
        "resumed": resumed,
        "still_queued": [p.descriptor.name for p in runtime.orchestrator.consent_queue],
    }


@router.post("/ready")
async def publish_ready(runtime: LoaderRuntime = Depends(get_runtime)):
    """Publish the ready topic, triggering the initial load of all plugins."""
    runtime.publish_ready()
    return {"status": "published", "topic": runtime.settings.ready_topic, "started": runtime.started}


@router.get("/status", response_model=SystemStatus)
async def system_status(runtime: LoaderRuntime = Depends(get_runtime)):
    """Return a snapshot of overall runtime status."""
    return SystemStatus(
        status="operational",
        started=runtime.started,
        page_url=runtime.page.url,
        registered_plugins=list(runtime.orchestrator.plugins),
        pending_plugins=runtime.pending(),
        consent_queue=[p.descriptor.name for p in runtime.orchestrator.consent_queue],
        consent_granted=runtime.consent.granted,
    )


@router.get("/health")
async def health_check():
    """Simple liveness probe for the API service."""
    return {"status": "healthy"}


def initialize_api(settings: Settings, runtime: Optional[LoaderRuntime] = None) -> LoaderRuntime:
    """Build (unless given) and start the runtime, and register it for the routes.

    A runtime built here is configured from the definition modules named in
    ``settings``; a runtime passed in is used as already configured.

    Args:
        settings: Application settings.
        runtime: Optional pre-built runtime.

    Returns:
        LoaderRuntime: The runtime now served by the routes.
    """
    if runtime is None:
        runtime = LoaderRuntime(settings)
        runtime.configure()

    runtime.start()
    service_container.initialize(runtime)
    service_container.logger.info("API initialized successfully")
    service_container.logger.info(
        f"Registered plugins: {list(runtime.orchestrator.plugins)}"
    )
    return runtime
