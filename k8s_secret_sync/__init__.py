"""Sync annotated Kubernetes Secrets from external secret providers."""

__version__ = "0.1.0"
