"""Remote job driver engine."""
