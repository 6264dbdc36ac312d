"""Text preparation: record projection and chunking."""
