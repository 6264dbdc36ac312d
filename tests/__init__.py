"""Tests for the talent index.

Unit tests run against an in-memory record store and a deterministic fake
embedding provider; no PostgreSQL, Redis, or provider account is needed.
"""
