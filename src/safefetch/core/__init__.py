"""Core subsystems: configuration, logging, and URL security."""
