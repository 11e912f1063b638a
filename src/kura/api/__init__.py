"""HTTP API for Kura search."""
