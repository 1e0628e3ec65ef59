"""HTTP API for the Compyy service."""
