"""Notification chunking, endpoint routing, retry and dispositions."""
