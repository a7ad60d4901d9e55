"""Real-time gateway protocol client."""
