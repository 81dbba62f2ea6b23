"""Transcription ingestion: queue intake, job submission and result reconciliation."""
