"""Infrastructure layer — resilience and observability for the support assistant.

Modules:
    retry            Exponential backoff retrier for transient upstream failures.
    circuit_breaker  Named circuit breakers and the registry that owns them.
    cache            Fingerprint-keyed response cache with a JSON snapshot.
    ledger           Append-only attempt ledger with summaries and insights.
    executor         Request executor composing cache, breaker, retrier and ledger.
    metrics          Prometheus telemetry counters.
    storage          Atomic JSON file helpers.
"""
