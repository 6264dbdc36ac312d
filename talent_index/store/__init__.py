"""Backing store abstractions and the PostgreSQL/pgvector implementation."""
