"""Configuration, environment, logging and error types shared across agentflow."""
