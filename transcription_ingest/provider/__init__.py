"""Transcription provider clients."""
