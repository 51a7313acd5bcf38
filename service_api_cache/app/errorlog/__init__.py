"""
Error log package.

Upstream failures and rejected cache writes are persisted per client so
they can be inspected after the fact, next to the structured log line.
"""
