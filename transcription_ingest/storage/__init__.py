"""Object storage clients and blob URL helpers."""
