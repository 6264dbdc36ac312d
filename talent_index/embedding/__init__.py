"""Embedding generation.

- ``client``: cached embedding client and store literal helpers.
- ``providers``: HTTP embedding providers.
- ``circuit_breaker`` / ``retry``: resilience around provider calls.
"""
