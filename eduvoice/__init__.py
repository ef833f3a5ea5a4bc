"""
EduVoice - AI provider fallback and token metering for EduVoice AI.
"""

__version__ = "0.1.0"
