"""CourtScribe transcription backend."""
