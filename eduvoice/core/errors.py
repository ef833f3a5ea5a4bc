"""
Base exception for business-rule failures.

Each concrete error lives next to the code that raises it.
"""


class EduVoiceError(Exception):
    """Root of every error the core raises on purpose."""
