"""Managed background jobs for external security-scanning tools."""

__version__ = "0.3.0"
