"""Ingestion core: normalization, fingerprinting, validation, polling."""
