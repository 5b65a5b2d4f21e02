"""eventsync: keep one canonical event catalog in sync across heterogeneous sources."""

__version__ = "0.1.0"
