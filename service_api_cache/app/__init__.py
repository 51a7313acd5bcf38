"""
API Cache Service package.

Sits in front of outbound calls to third-party HTTP APIs, providing:
- Response caching: deterministic request fingerprints, optional TTL and
  optional at-rest compression, with namespaced per-client storage
- Rate limiting: fixed-window per-client request quotas shared through storage

Structure:
- app.main: FastAPI admin app and route wiring.
- app.factory: Builds stores, limiter and cache manager from settings.
- app.caching: Key derivation, compression, cache stores and the cache manager.
- app.ratelimit: Window model, rate limit stores and the window rate limiter.
- app.adapters: Transport and orchestrating API clients.
"""
