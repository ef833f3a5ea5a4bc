"""
SDK for EduVoice.

Provider access bound to explicit credentials.
"""

from .provider_client import ProviderClient, ProviderClientFactory

__all__ = ["ProviderClient", "ProviderClientFactory"]
