"""Tracing integrations."""
