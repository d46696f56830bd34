"""Deterministic proposal enrichment helpers."""
