"""
Command-line interface for EduVoice.
"""
