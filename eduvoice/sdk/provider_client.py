"""
Per-credential provider client.

Records usage events for every successful call, tagged with the credential
source that served it.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..config.loader import ProviderConfig
from ..core.sequencer import CredentialCandidate
from ..storage.base import UsageStore
from ..storage.models import LLMUsageEvent
from ..storage.repository import Repository


class ProviderClient:
    """OpenAI-compatible chat client bound to a single credential.

    One instance per credential and call; there is no shared client, so a
    user key can never leak into a request made with the platform key.
    All failures are loud to ensure no silent data loss.
    """

    def __init__(
        self,
        config: ProviderConfig,
        secret: str,
        source_label: str,
        usage_store: Optional[UsageStore] = None
    ):
        """Initialize provider client.

        Args:
            config: Provider endpoint and model
            secret: API key for this credential (required)
            source_label: Credential source recorded on usage events
            usage_store: Where usage events are recorded (defaults to
                a Repository on "eduvoice.db")

        Raises:
            ValueError: If secret or source_label is missing/empty
        """
        if not secret or not secret.strip():
            raise ValueError("secret is required and cannot be empty")
        if not source_label or not source_label.strip():
            raise ValueError("source_label is required and cannot be empty")

        self.model = config.model
        self.source_label = source_label
        self.usage_store = usage_store or Repository()
        self.client = OpenAI(api_key=secret, base_url=config.base_url)

    def generate_json(
        self,
        feature: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        **kwargs: Any
    ) -> Optional[str]:
        """Request a JSON object completion and record its usage.

        Args:
            feature: Feature identifier for tracking (required)
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            **kwargs: Additional chat completion parameters

        Returns:
            The message content, or None when the model returned none

        Raises:
            ValueError: If feature or messages is empty, or usage is missing
            OpenAI API errors: Propagated without modification
            Database errors: Propagated without modification
        """
        if not feature or not feature.strip():
            raise ValueError("feature is required and cannot be empty")
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        if temperature is not None:
            kwargs["temperature"] = temperature

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            response_format={"type": "json_object"},
            **kwargs
        )

        usage = response.usage
        if not usage:
            raise ValueError("Provider response missing usage information")

        event = LLMUsageEvent(
            timestamp=datetime.now(timezone.utc),
            feature=feature,
            model=self.model,
            credential_source=self.source_label,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            request_id=response.id
        )
        self.usage_store.insert_usage_event(event)

        if not response.choices:
            return None
        return response.choices[0].message.content


class ProviderClientFactory:
    """Builds a ProviderClient for a credential candidate."""

    def __init__(self, config: ProviderConfig, usage_store: Optional[UsageStore] = None):
        self.config = config
        self.usage_store = usage_store

    def __call__(self, candidate: CredentialCandidate) -> ProviderClient:
        return ProviderClient(
            self.config,
            candidate.secret or "",
            candidate.source_label,
            self.usage_store
        )
