"""Runtime wiring and metrics for the caption server."""
