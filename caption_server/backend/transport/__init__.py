"""Network transports for room peers."""
