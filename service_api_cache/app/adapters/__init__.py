"""
Outbound adapters: the HTTP transport and the API clients that drive the
cache and rate limiter around each upstream call.
"""
