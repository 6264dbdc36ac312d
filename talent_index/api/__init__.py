"""HTTP service exposing search and reindex operations."""
