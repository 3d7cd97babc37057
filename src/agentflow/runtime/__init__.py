"""Agent runtime: hooks, interceptors, quota and audit collaborators."""
