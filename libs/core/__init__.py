__all__ = [
    "models",
    "events",
    "schemas",
    "sanitizer",
    "graph",
    "state_machine",
    "idempotency",
    "store",
    "orchestrator",
    "llm_provider",
    "prompts",
    "notifier",
    "worker_pool",
    "logging",
]
