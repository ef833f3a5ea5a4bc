"""
Tests for the CLI interface.
"""
import json
import os
import shutil
import tempfile
from datetime import timedelta
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from eduvoice.cli.main import (
    _State,
    app,
    EXIT_CODE_FAIL,
    EXIT_CODE_INSUFFICIENT_TOKENS,
    EXIT_CODE_PASS,
)
from eduvoice.config.loader import AppConfig, ExamConfig
from eduvoice.storage.repository import Repository

runner = CliRunner()

LECTURE_JSON = json.dumps({
    "lecture_content": "Mitochondria produce ATP through respiration.",
    "summary": "The powerhouse of the cell.",
    "youtube_video_links": ["https://www.youtube.com/watch?v=mito"],
})


@pytest.fixture
def db_path():
    """Initialized temporary database."""
    temp_dir = tempfile.mkdtemp()
    path = os.path.join(temp_dir, "test.db")
    result = runner.invoke(app, ["--db", path, "init"])
    assert result.exit_code == EXIT_CODE_PASS
    yield path
    shutil.rmtree(temp_dir, ignore_errors=True)


def _invoke(db_path, *args):
    return runner.invoke(app, ["--db", db_path, *args])


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self, db_path):
        result = _invoke(db_path)
        assert result.exit_code == EXIT_CODE_PASS
        assert "--help" in result.output

    def test_init(self, db_path):
        result = _invoke(db_path, "init")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output

    def test_create_account_and_balance(self, db_path):
        result = _invoke(db_path, "create-account", "alice", "--balance", "1500")
        assert result.exit_code == EXIT_CODE_PASS

        result = _invoke(db_path, "balance", "alice")
        assert result.exit_code == EXIT_CODE_PASS
        assert "1,500" in result.output
        assert "Free" in result.output

    def test_duplicate_account_fails(self, db_path):
        _invoke(db_path, "create-account", "alice")
        result = _invoke(db_path, "create-account", "alice")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "already exists" in result.output

    def test_balance_unknown_user(self, db_path):
        result = _invoke(db_path, "balance", "nobody")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "not found" in result.output

    def test_activate_pro(self, db_path):
        _invoke(db_path, "create-account", "alice")

        result = _invoke(db_path, "activate-pro", "alice", "--source", "stripe_checkout")

        assert result.exit_code == EXIT_CODE_PASS
        assert "60,000" in result.output
        assert "Pro" in _invoke(db_path, "balance", "alice").output

    def test_voucher_create_and_redeem(self, db_path):
        _invoke(db_path, "create-account", "alice")

        result = _invoke(db_path, "create-voucher", "spring25", "--max-uses", "1")
        assert result.exit_code == EXIT_CODE_PASS
        assert "SPRING25" in result.output

        result = _invoke(db_path, "redeem", "alice", "SPRING25")
        assert result.exit_code == EXIT_CODE_PASS
        assert "60,000" in result.output

        result = _invoke(db_path, "redeem", "alice", "SPRING25")
        assert result.exit_code == EXIT_CODE_FAIL

    def test_redeem_unknown_voucher(self, db_path):
        _invoke(db_path, "create-account", "alice")
        result = _invoke(db_path, "redeem", "alice", "NOPE")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "not found" in result.output

    def test_transactions_table(self, db_path):
        _invoke(db_path, "create-account", "alice")
        _invoke(db_path, "activate-pro", "alice")

        result = _invoke(db_path, "transactions", "alice")

        assert result.exit_code == EXIT_CODE_PASS
        assert "subscription_activation" in result.output

    def test_transactions_empty(self, db_path):
        result = _invoke(db_path, "transactions", "nobody")
        assert result.exit_code == EXIT_CODE_PASS
        assert "No transactions found" in result.output

    def test_invalid_config_fails(self, db_path):
        config_path = os.path.join(os.path.dirname(db_path), "config.yaml")
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump({"ledger": {"max_retries": 0}}, f)

        result = runner.invoke(app, ["--db", db_path, "--config", config_path, "init"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Configuration error" in result.output


class TestLectureCommand:
    """Test the lecture command against a mocked provider."""

    @patch("eduvoice.sdk.provider_client.ProviderClient.generate_json")
    @patch("eduvoice.sdk.provider_client.OpenAI")
    def test_lecture_success(self, mock_openai, mock_generate, db_path, monkeypatch):
        monkeypatch.setenv("EDUVOICE_PLATFORM_API_KEY", "platform-key")
        mock_generate.return_value = LECTURE_JSON
        _invoke(db_path, "create-account", "alice", "--balance", "600")

        result = _invoke(db_path, "lecture", "alice", "Mitochondria")

        assert result.exit_code == EXIT_CODE_PASS
        assert "powerhouse of the cell" in result.output
        assert Repository(db_path).get_account("alice").balance == 100

    @patch("eduvoice.sdk.provider_client.OpenAI")
    def test_lecture_insufficient_tokens(self, mock_openai, db_path, monkeypatch):
        monkeypatch.setenv("EDUVOICE_PLATFORM_API_KEY", "platform-key")
        _invoke(db_path, "create-account", "alice", "--balance", "499")

        result = _invoke(db_path, "lecture", "alice", "Mitochondria")

        assert result.exit_code == EXIT_CODE_INSUFFICIENT_TOKENS
        assert "Insufficient tokens" in result.output
        mock_openai.assert_not_called()

    @patch("eduvoice.sdk.provider_client.OpenAI")
    def test_lecture_without_platform_key(self, mock_openai, db_path, monkeypatch):
        monkeypatch.delenv("EDUVOICE_PLATFORM_API_KEY", raising=False)
        monkeypatch.delenv("EDUVOICE_USER_API_KEY", raising=False)
        _invoke(db_path, "create-account", "alice", "--balance", "600")

        result = _invoke(db_path, "lecture", "alice", "Mitochondria")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Lecture generation failed" in result.output


QUIZ_JSON = json.dumps({
    "questions": ["What is ATP?"],
    "correct_answers": ["Energy currency"],
})

EVALUATION_JSON = json.dumps({
    "overall_score": 1,
    "overall_feedback": "Well done.",
    "detailed_feedback": [{
        "question_text": "What is ATP?",
        "user_answer": "Energy currency",
        "is_correct": True,
        "score": 1,
        "correct_answer": "Energy currency",
        "ai_feedback": "Correct.",
    }],
})


class TestExamCommands:
    """Test the exam commands against a mocked provider."""

    @patch("eduvoice.sdk.provider_client.ProviderClient.generate_json")
    @patch("eduvoice.sdk.provider_client.OpenAI")
    def test_exam_lifecycle(self, mock_openai, mock_generate, db_path, monkeypatch):
        monkeypatch.setenv("EDUVOICE_PLATFORM_API_KEY", "platform-key")
        mock_generate.side_effect = [QUIZ_JSON, EVALUATION_JSON]
        notes = os.path.join(os.path.dirname(db_path), "notes.txt")
        with open(notes, "w", encoding="utf-8") as f:
            f.write("ATP is the energy currency of the cell.")

        result = _invoke(db_path, "exam-create", "alice", notes, "--questions", "1")
        assert result.exit_code == EXIT_CODE_PASS
        session_id = result.output.split("Exam session created: ")[1].split()[0]

        result = _invoke(db_path, "exam-start", session_id)
        assert result.exit_code == EXIT_CODE_PASS
        assert "What is ATP?" in result.output

        result = _invoke(db_path, "exam-answer", session_id, "0", "Energy currency")
        assert result.exit_code == EXIT_CODE_PASS

        result = _invoke(db_path, "exam-submit", session_id, notes)
        assert result.exit_code == EXIT_CODE_PASS
        assert "completed" in result.output
        assert "Score: 1/1" in result.output

    def test_exam_start_unknown_session(self, db_path):
        result = _invoke(db_path, "exam-start", "missing")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "not found" in result.output

    def test_exam_service_uses_configured_grace(self, db_path):
        config = AppConfig(exam=ExamConfig(grace_seconds=5))

        service = _State(db_path, config).exams()

        assert service.grace == timedelta(seconds=5)
