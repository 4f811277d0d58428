"""Configuration module for logscout.

- Config: Settings plus the servers file
- Settings: Environment variable configuration
- load_servers: YAML servers file loader
"""

from logscout.config.loader import load_servers, parse_config, parse_duration
from logscout.config.main import Config
from logscout.config.settings import Settings

__all__ = ["Config", "Settings", "load_servers", "parse_config", "parse_duration"]
