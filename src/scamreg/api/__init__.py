"""HTTP API for the scam registry."""
