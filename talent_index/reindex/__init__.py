"""Change-driven and criteria-driven reindexing."""
