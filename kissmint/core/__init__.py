"""Core configuration, logging, database and shared utilities."""
