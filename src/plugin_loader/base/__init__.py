"""Shared base classes.

Exposes:
- `Loggable`: mixin providing a per-class `logger`
"""

from .loggable import Loggable

__all__ = ["Loggable"]
