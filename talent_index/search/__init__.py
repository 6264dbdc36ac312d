"""Vector, lexical, and hybrid search over indexed records."""
