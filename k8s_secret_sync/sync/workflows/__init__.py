"""Workflows: reconciliation, the watch loop and process bootstrap."""
