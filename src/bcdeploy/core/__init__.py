"""Core models, configuration and errors."""
