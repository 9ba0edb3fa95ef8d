"""Event bus exports.

Exposes:
- `PubSub`: explicitly constructed publish/subscribe bus
"""

from .pubsub import PubSub, Subscription

__all__ = ["PubSub", "Subscription"]
