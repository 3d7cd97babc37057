"""Durable stores for checkpoints, quota and audit."""

from agentflow.storage.factory import Stores, create_stores

__all__ = ["Stores", "create_stores"]
