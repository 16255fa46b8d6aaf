"""Pluggable building blocks: models, retrieval, personas, persistence."""
