"""Audio buffering, gating and transcription queue building blocks."""
