"""Service-layer helpers."""
