"""Signal client core: feed assembly and real-time reconciliation over a document store."""

__version__ = "0.1.0"
