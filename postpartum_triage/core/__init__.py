"""Core configuration, logging and security."""
