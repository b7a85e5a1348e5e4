"""Shared utilities: logging, configuration and caching."""
