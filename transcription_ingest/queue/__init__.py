"""Queue substrate clients and notification intake."""
