"""
Configuration for EduVoice.
"""

from .loader import AppConfig, default_config, load_config

__all__ = ["AppConfig", "default_config", "load_config"]
