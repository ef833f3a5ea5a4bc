"""
Unit tests for SDK layer.

Tests provider client construction and usage recording.
"""

import json
import os
import shutil
import tempfile
from unittest.mock import Mock, patch

import pytest

from eduvoice.config.loader import ProviderConfig
from eduvoice.core.sequencer import CredentialCandidate
from eduvoice.sdk.provider_client import ProviderClient, ProviderClientFactory
from eduvoice.storage.repository import (
    Repository,
    fetch_recent_usage_events,
    initialize_schema,
)

MESSAGES = [{"role": "user", "content": "Explain osmosis as JSON"}]


def _response(content='{"summary": "ok"}', usage=True, choices=True):
    response = Mock()
    response.id = "chatcmpl_123"
    if usage:
        response.usage.prompt_tokens = 100
        response.usage.completion_tokens = 50
        response.usage.total_tokens = 150
    else:
        response.usage = None
    if choices:
        response.choices = [Mock()]
        response.choices[0].message.content = content
    else:
        response.choices = []
    return response


class TestProviderClient:
    """Test ProviderClient wrapper."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repository = Repository(self.db_path)
        self.config = ProviderConfig()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @patch('eduvoice.sdk.provider_client.OpenAI')
    def test_init_binds_credential(self, mock_openai_class):
        client = ProviderClient(self.config, "user-key", "user", self.repository)

        mock_openai_class.assert_called_once_with(
            api_key="user-key",
            base_url="https://generativelanguage.googleapis.com/v1beta/openai/"
        )
        assert client.model == "gemini-2.0-flash"
        assert client.source_label == "user"
        assert client.usage_store is self.repository

    @patch('eduvoice.sdk.provider_client.OpenAI')
    def test_init_default_usage_store(self, mock_openai_class):
        client = ProviderClient(self.config, "user-key", "user")
        assert isinstance(client.usage_store, Repository)
        assert client.usage_store.db_path == "eduvoice.db"

    @pytest.mark.parametrize("secret", ["", "   ", None])
    def test_init_missing_secret(self, secret):
        with pytest.raises(ValueError, match="secret is required"):
            ProviderClient(self.config, secret, "user", self.repository)

    def test_init_missing_source_label(self):
        with pytest.raises(ValueError, match="source_label is required"):
            ProviderClient(self.config, "key", "", self.repository)

    @patch('eduvoice.sdk.provider_client.OpenAI')
    def test_generate_json_records_event(self, mock_openai_class):
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = _response()
        mock_openai_class.return_value = mock_client

        client = ProviderClient(self.config, "platform-key", "platform", self.repository)
        content = client.generate_json("topic_lecture", MESSAGES)

        assert json.loads(content) == {"summary": "ok"}
        mock_client.chat.completions.create.assert_called_once_with(
            model="gemini-2.0-flash",
            messages=MESSAGES,
            response_format={"type": "json_object"}
        )

        events = fetch_recent_usage_events(db_path=self.db_path)
        assert len(events) == 1
        assert events[0].feature == "topic_lecture"
        assert events[0].credential_source == "platform"
        assert events[0].total_tokens == 150
        assert events[0].request_id == "chatcmpl_123"

    @patch('eduvoice.sdk.provider_client.OpenAI')
    def test_generate_json_passes_temperature(self, mock_openai_class):
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = _response()
        mock_openai_class.return_value = mock_client

        client = ProviderClient(self.config, "key", "user", self.repository)
        client.generate_json("topic_lecture", MESSAGES, temperature=0.2)

        _, kwargs = mock_client.chat.completions.create.call_args
        assert kwargs["temperature"] == 0.2

    @patch('eduvoice.sdk.provider_client.OpenAI')
    def test_generate_json_validation(self, mock_openai_class):
        client = ProviderClient(self.config, "key", "user", self.repository)

        with pytest.raises(ValueError, match="messages is required"):
            client.generate_json("topic_lecture", [])
        with pytest.raises(ValueError, match="feature is required"):
            client.generate_json(" ", MESSAGES)

    @patch('eduvoice.sdk.provider_client.OpenAI')
    def test_api_error_propagates_without_event(self, mock_openai_class):
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = RuntimeError("quota exceeded")
        mock_openai_class.return_value = mock_client

        client = ProviderClient(self.config, "key", "user", self.repository)
        with pytest.raises(RuntimeError, match="quota exceeded"):
            client.generate_json("topic_lecture", MESSAGES)

        assert fetch_recent_usage_events(db_path=self.db_path) == []

    @patch('eduvoice.sdk.provider_client.OpenAI')
    def test_missing_usage_is_loud(self, mock_openai_class):
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = _response(usage=False)
        mock_openai_class.return_value = mock_client

        client = ProviderClient(self.config, "key", "user", self.repository)
        with pytest.raises(ValueError, match="missing usage"):
            client.generate_json("topic_lecture", MESSAGES)

    @patch('eduvoice.sdk.provider_client.OpenAI')
    def test_no_choices_returns_none(self, mock_openai_class):
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = _response(choices=False)
        mock_openai_class.return_value = mock_client

        client = ProviderClient(self.config, "key", "user", self.repository)
        assert client.generate_json("topic_lecture", MESSAGES) is None


class TestProviderClientFactory:
    """Test per-candidate client construction."""

    @patch('eduvoice.sdk.provider_client.OpenAI')
    def test_builds_client_per_candidate(self, mock_openai_class):
        store = Mock()
        factory = ProviderClientFactory(ProviderConfig(base_url=None), store)

        user = factory(CredentialCandidate("user", "user-key", 0))
        platform = factory(CredentialCandidate("platform", "platform-key", 1))

        assert user is not platform
        assert user.source_label == "user"
        assert platform.usage_store is store
        secrets = [c.kwargs["api_key"] for c in mock_openai_class.call_args_list]
        assert secrets == ["user-key", "platform-key"]

    @patch('eduvoice.sdk.provider_client.OpenAI')
    def test_usage_goes_to_injected_store(self, mock_openai_class):
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = _response()
        mock_openai_class.return_value = mock_client
        store = Mock()

        factory = ProviderClientFactory(ProviderConfig(), store)
        factory(CredentialCandidate("user", "user-key", 0)).generate_json("topic_lecture", MESSAGES)

        store.insert_usage_event.assert_called_once()
        event = store.insert_usage_event.call_args[0][0]
        assert event.credential_source == "user"
        assert event.total_tokens == 150
