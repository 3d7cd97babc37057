"""REST API server."""
