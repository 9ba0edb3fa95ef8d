"""Script execution exports.

Exposes:
- `Page`, `ScriptTag`: server-side document model
- `ScriptExecutor`: executor protocol
- `HttpScriptExecutor`: httpx-backed executor
"""

from .page import Page, ScriptTag
from .script import HttpScriptExecutor, ScriptExecutor, build_tag

__all__ = ["Page", "ScriptTag", "ScriptExecutor", "HttpScriptExecutor", "build_tag"]
