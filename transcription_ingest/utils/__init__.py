"""Shared errors and retry helpers."""
