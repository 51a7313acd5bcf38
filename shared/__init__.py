"""
Shared utilities for the API cache layer.

This package aggregates common building blocks consumed by the service,
its scripts and its tests:

- config: Process settings via pydantic-settings and per-client configuration
- logging: Structured logging with request/client correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service scaffolding

Do not import from service_* packages into shared/.
"""
