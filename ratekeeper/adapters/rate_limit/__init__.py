"""Rate limit storage adapters.

This package provides a small abstraction layer so the service can start with
an in-memory counter store and later migrate to Redis or another shared store
without changing the admission guard or the API layer.
"""
