"""HTTP API -- FastAPI gateway over the turn scheduler."""
