"""Script executors: attach a plugin's tag to the page and report the outcome.

An executor reports exactly one of ``on_load()`` or ``on_error(exc)`` per
``execute`` call, asynchronously. Timeouts are not its concern: the
orchestrator arms its own alarm and ignores late reports.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping, Optional, Protocol, Set

import httpx

from ..base.loggable import Loggable
from .page import Page, ScriptTag

_DEFAULT_HEADERS: Mapping[str, str] = {
    "User-Agent": "plugin-loader/1.0",
    "Accept": "application/javascript, text/javascript, */*",
}
_DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)

OnLoad = Callable[[], Any]
OnError = Callable[[BaseException], Any]


class ScriptExecutor(Protocol):
    def execute(self, descriptor: Any, on_load: OnLoad, on_error: OnError) -> ScriptTag: ...

    def remove(self, tag: ScriptTag) -> None: ...


def build_tag(descriptor: Any) -> ScriptTag:
    """Create the script tag described by a plugin descriptor."""
    return ScriptTag(
        id=descriptor.id,
        src=descriptor.url,
        async_=descriptor.async_,
        attributes=list(descriptor.attributes),
        location=descriptor.location,
    )


class HttpScriptExecutor(Loggable):
    """Attach tags to a `Page` and download their sources with httpx.

    Sources are resolved against the page URL, so relative paths work as in a
    browser; the tag keeps ``src`` as written. A 2xx response counts as
    loaded; any other status, an invalid URL or a transport failure is
    reported through ``on_error``. Downloads run as background tasks on the
    running event loop.

    Args:
        page: Page receiving the tags.
        client: Optional shared client; when omitted the executor creates and
            owns one.
        timeout: Transport timeout for the owned client.
    """

    def __init__(
        self,
        page: Page,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: httpx.Timeout | float | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__()
        self.page = page
        self._owns_client = client is None
        if client is None:
            merged = dict(_DEFAULT_HEADERS)
            if headers:
                merged.update(headers)
            client = httpx.AsyncClient(
                timeout=timeout if timeout is not None else _DEFAULT_TIMEOUT,
                headers=merged,
                follow_redirects=True,
            )
        self.client = client
        self._tasks: Set[asyncio.Task] = set()

    def execute(self, descriptor: Any, on_load: OnLoad, on_error: OnError) -> ScriptTag:
        """Attach the descriptor's tag and start downloading its source.

        Must be called from a running event loop.
        """
        tag = build_tag(descriptor)
        self.page.attach(tag)
        self.logger.debug(f"Attached {tag.id} to {tag.location}: {tag.src}")

        task = asyncio.get_running_loop().create_task(
            self._fetch(tag, on_load, on_error), name=f"fetch:{tag.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return tag

    def resolve(self, src: str) -> httpx.URL:
        """Resolve a tag source against the page URL, as a browser would."""
        return httpx.URL(self.page.url).join(src)

    async def _fetch(self, tag: ScriptTag, on_load: OnLoad, on_error: OnError) -> None:
        try:
            response = await self.client.get(self.resolve(tag.src))
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self.logger.warning(f"Script {tag.id} failed to load from {tag.src}: {e}")
            on_error(e)
            return
        except Exception as e:
            self.logger.error(f"Unexpected failure fetching script {tag.id} from {tag.src}: {e}")
            on_error(e)
            return
        on_load()

    def remove(self, tag: ScriptTag) -> None:
        self.page.detach(tag)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def aclose(self) -> None:
        """Cancel in-flight downloads and close the owned client."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_client:
            await self.client.aclose()
