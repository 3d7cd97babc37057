"""Agent registry, workflow services, multi-agent patterns and wiring."""
