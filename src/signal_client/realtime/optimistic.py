"""Optimistic counters reconciled against server snapshots."""

from dataclasses import dataclass


@dataclass
class OptimisticCounter:
    """A displayed count that reacts to local actions before the server confirms.

    ``pending`` accumulates local deltas. The next server snapshot replaces the
    base value and drops the pending delta, so the server value wins.
    """

    server_value: int = 0
    pending: int = 0

    @property
    def value(self) -> int:
        return max(0, self.server_value + self.pending)

    def apply(self, delta: int) -> int:
        self.pending += delta
        return self.value

    def rollback(self, delta: int) -> int:
        """Undo a local delta whose write failed."""
        self.pending -= delta
        return self.value

    def reconcile(self, server_value: int) -> int:
        self.server_value = server_value
        self.pending = 0
        return self.value
