"""Search index and incremental reindexing for recruiting records.

Subpackages:
- ``talent_index.common``: configuration, logging, errors, metrics, and events.
- ``talent_index.text``: record projection and chunking.
- ``talent_index.embedding``: embedding provider client, cache, and resilience.
- ``talent_index.store``: backing store contract and the PostgreSQL backend.
- ``talent_index.search``: vector, lexical, and hybrid search.
- ``talent_index.reindex``: change listener and reindex orchestration.
- ``talent_index.api``: HTTP service exposing search and reindex.

Notes:
- Records are owned by the surrounding application; this package only reads
  them and writes back ``search_text`` and ``embedding``.
"""

__version__ = "0.1.0"
