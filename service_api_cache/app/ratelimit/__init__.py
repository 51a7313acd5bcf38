"""
Rate limiting package.

Holds the fixed-window counter model, its storage backends and the limiter
that makes allow/deny decisions per client.
"""
