"""
Observability for EduVoice.

Structured logging setup shared by the core, SDK and CLI.
"""

from .logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
