"""Provider result reconciliation."""
