"""agentflow: graph workflows and middleware pipelines around agent model calls."""

__version__ = "0.1.0"
