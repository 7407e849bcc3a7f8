"""Shared building blocks for the executor.

Modules
-------
logging     structlog configuration and context binding
errors      typed error hierarchy with categories
config      ``ExecutorSettings`` (pydantic-settings) and cached loader
models      TaskEnvelope, TaskState, ProgressEvent
store       Task State persistence and usage counters (Redis / in-memory)
events      best-effort broadcast bus (Redis Pub/Sub / in-memory)
"""
