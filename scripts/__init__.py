"""Operational scripts for the talent index.

Scripts include:
- ``reindex_by_criteria.py``: batch catch-up over records matching criteria.
- ``run_reindex_listener.py``: run the change listener and reindex orchestrator.
"""
