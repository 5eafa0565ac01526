"""Real-time reconciliation of store change streams."""

from signal_client.realtime.optimistic import OptimisticCounter
from signal_client.realtime.reconciler import LiveCollection, Reconciler
from signal_client.realtime.subscription import Subscription

__all__ = ["LiveCollection", "OptimisticCounter", "Reconciler", "Subscription"]
