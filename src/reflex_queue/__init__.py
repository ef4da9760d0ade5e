"""Reflex work queue - durable multi-stage event queues on Redis."""

__version__ = "0.1.0"
