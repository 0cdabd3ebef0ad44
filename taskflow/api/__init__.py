"""HTTP API for the task assistant."""
