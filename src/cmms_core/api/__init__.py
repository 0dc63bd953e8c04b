"""HTTP API for the work order engine."""
