"""Configuration package exports.

Exposes:
- `Settings`: Pydantic settings for runtime configuration
"""

from .settings import Settings

__all__ = ["Settings"]
