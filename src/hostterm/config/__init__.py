"""Configuration management for hostterm.

Loads and validates YAML-based configuration with Pydantic models.
Every option has a default, so a missing file or section never stops
the server from starting.
"""

from hostterm.config.settings import Settings, TerminalConfig, load_settings

__all__ = ["Settings", "TerminalConfig", "load_settings"]
