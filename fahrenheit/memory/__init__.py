"""Observational memory: append-only history, curated memory, compaction."""
