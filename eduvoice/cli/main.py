"""
CLI interface for EduVoice.

Provides command-line access to accounts, vouchers, exams and the AI flows.
"""

import base64
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from eduvoice.config import AppConfig, default_config, load_config
from eduvoice.core.aggregator import NoValidOutput
from eduvoice.core.errors import EduVoiceError
from eduvoice.core.exam import MANUAL, ExamSessionService
from eduvoice.core.flows import EduVoiceFlows
from eduvoice.core.ledger import InsufficientTokens, TokenLedger
from eduvoice.core.pricing import TokenPriceTable
from eduvoice.core.sequencer import ProviderAttemptSequencer
from eduvoice.core.vouchers import VoucherService
from eduvoice.observability import setup_logging
from eduvoice.sdk import ProviderClientFactory
from eduvoice.storage.db import DEFAULT_DB_PATH
from eduvoice.storage.repository import Repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_INSUFFICIENT_TOKENS = 2


class _State:
    def __init__(self, db_path: str, config: AppConfig):
        self.db_path = db_path
        self.config = config

    def repository(self) -> Repository:
        return Repository(self.db_path)

    def ledger(self) -> TokenLedger:
        tokens = self.config.tokens
        return TokenLedger(
            self.repository(),
            max_retries=self.config.ledger.max_retries,
            subscription_grant=tokens.subscription_grant,
            subscription_days=tokens.subscription_days
        )

    def flows(self) -> EduVoiceFlows:
        return EduVoiceFlows(
            ledger=self.ledger(),
            sequencer=ProviderAttemptSequencer(
                always_try_final_fallback=self.config.fallback.always_try_final_fallback
            ),
            client_factory=ProviderClientFactory(self.config.provider, self.repository()),
            prices=TokenPriceTable(self.config.tokens.costs),
            platform_secret=self.config.provider.platform_secret()
        )

    def exams(self, document: str = "", user_api_key: Optional[str] = None) -> ExamSessionService:
        """Exam service whose evaluator scores against document."""
        return ExamSessionService(
            self.repository(),
            self.flows().exam_evaluator(document, user_api_key),
            grace_seconds=self.config.exam.grace_seconds
        )


def _state(ctx: typer.Context) -> _State:
    return ctx.obj


def _read_document(path: str) -> str:
    """Plain text, or a PDF data URI for .pdf files."""
    source = Path(path)
    if source.suffix.lower() == ".pdf":
        payload = base64.b64encode(source.read_bytes()).decode("ascii")
        return f"data:application/pdf;base64,{payload}"
    return source.read_text(encoding="utf-8")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database file"),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML configuration file"
    )
):
    """EduVoice CLI."""
    try:
        app_config = load_config(config) if config else default_config()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    setup_logging(app_config.logging.level, app_config.logging.format)
    ctx.obj = _State(db, app_config)

    if ctx.invoked_subcommand is None:
        console.print("EduVoice - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the EduVoice database."""
    try:
        initialize_schema(_state(ctx).db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("create-account")
def create_account(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Account owner"),
    balance: int = typer.Option(0, "--balance", "-b", help="Starting token balance")
):
    """Open a token account for a user."""
    try:
        _state(ctx).ledger().open_account(user_id, balance)
        console.print(f"[green]✓[/] Account created for {user_id} with {balance:,} tokens")
        sys.exit(EXIT_CODE_PASS)
    except (EduVoiceError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def balance(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Account owner")
):
    """Show a user's token balance and subscription status."""
    try:
        account = _state(ctx).ledger().get_account(user_id)
    except EduVoiceError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Account:[/bold] {account.user_id}")
    console.print(f"Token balance: {account.balance:,}")
    if account.is_subscribed(datetime.now(timezone.utc)):
        ends = account.subscription_ends_at
        console.print(
            "Plan: [green]Pro[/]"
            + (f" (until {ends:%Y-%m-%d})" if ends else "")
        )
    else:
        console.print("Plan: Free")
    sys.exit(EXIT_CODE_PASS)


@app.command("activate-pro")
def activate_pro(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Account owner"),
    source: str = typer.Option("manual", "--source", "-s", help="Activation source label")
):
    """Activate the Pro plan and grant its tokens."""
    try:
        account = _state(ctx).ledger().activate_subscription(user_id, source)
        console.print(
            f"[green]✓[/] Pro plan active for {user_id}. "
            f"Balance: {account.balance:,} tokens"
        )
        sys.exit(EXIT_CODE_PASS)
    except EduVoiceError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("create-voucher")
def create_voucher(
    ctx: typer.Context,
    code: str = typer.Argument(..., help="Voucher code"),
    discount: int = typer.Option(100, "--discount", "-d", help="Discount percent"),
    expires_in_days: int = typer.Option(30, "--expires-in-days", "-e"),
    max_uses: Optional[int] = typer.Option(None, "--max-uses", "-m")
):
    """Issue a voucher code."""
    state = _state(ctx)
    service = VoucherService(state.repository(), state.ledger(),
                             grant_amount=state.config.tokens.voucher_grant)
    expires_at = datetime.now(timezone.utc) + timedelta(days=expires_in_days)
    try:
        voucher = service.create_voucher(code, discount, expires_at, max_uses)
        console.print(
            f"[green]✓[/] Voucher {voucher.code} created, "
            f"expires {voucher.expires_at:%Y-%m-%d}"
        )
        sys.exit(EXIT_CODE_PASS)
    except (EduVoiceError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def redeem(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Account owner"),
    code: str = typer.Argument(..., help="Voucher code")
):
    """Redeem a voucher for a user."""
    state = _state(ctx)
    service = VoucherService(state.repository(), state.ledger(),
                             grant_amount=state.config.tokens.voucher_grant)
    try:
        new_balance = service.redeem(user_id, code)
        console.print(f"[green]✓[/] Voucher redeemed. New balance: {new_balance:,} tokens")
        sys.exit(EXIT_CODE_PASS)
    except EduVoiceError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def transactions(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Account owner"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries")
):
    """List a user's most recent token transactions."""
    records = _state(ctx).repository().list_transactions(user_id, limit)
    if not records:
        console.print(f"\n[dim]No transactions found for {user_id}.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Transactions for {user_id}")
    table.add_column("Time", no_wrap=True)
    table.add_column("Type", no_wrap=True)
    table.add_column("Delta", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Description")
    for record in records:
        table.add_row(
            f"{record.timestamp:%Y-%m-%d %H:%M}",
            record.type.value,
            f"{record.delta:+,}",
            f"{record.resulting_balance:,}",
            record.description
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def lecture(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Account owner"),
    topic: str = typer.Argument(..., help="Lecture topic"),
    api_key: Optional[str] = typer.Option(
        None,
        "--api-key",
        envvar="EDUVOICE_USER_API_KEY",
        help="Your own provider API key, tried before the platform key"
    )
):
    """Generate a lecture on a topic."""
    try:
        result = _state(ctx).flows().generate_topic_lecture(user_id, topic, api_key)
    except InsufficientTokens as e:
        console.print(f"[red]Insufficient tokens:[/] {e.required:,} required, "
                      f"{e.balance:,} available")
        console.print("Upgrade with `eduvoice activate-pro` or redeem a voucher.")
        sys.exit(EXIT_CODE_INSUFFICIENT_TOKENS)
    except NoValidOutput as e:
        console.print(f"[red]Lecture generation failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]{topic}[/bold]\n")
    console.print(result.lecture_content)
    console.print(f"\n[bold]Summary:[/bold] {result.summary}")
    for link in result.youtube_video_links:
        console.print(f"- {link}")
    sys.exit(EXIT_CODE_PASS)


@app.command("exam-create")
def exam_create(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Exam taker"),
    document: str = typer.Argument(..., help="PDF or text file the quiz is built from"),
    title: str = typer.Option("Exam", "--title", "-t"),
    questions: int = typer.Option(5, "--questions", "-q", help="Number of questions"),
    minutes: int = typer.Option(10, "--minutes", "-m", help="Exam duration"),
    api_key: Optional[str] = typer.Option(None, "--api-key", envvar="EDUVOICE_USER_API_KEY")
):
    """Generate a timed quiz exam from a document."""
    state = _state(ctx)
    try:
        source = _read_document(document)
        quiz = state.flows().generate_quiz(user_id, source, questions, api_key)
        session = state.exams(source, api_key).create_session(user_id, title, quiz, minutes)
    except InsufficientTokens as e:
        console.print(f"[red]Insufficient tokens:[/] {e.required:,} required, "
                      f"{e.balance:,} available")
        sys.exit(EXIT_CODE_INSUFFICIENT_TOKENS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Exam session created: {session.session_id}")
    console.print(f"{len(session.questions)} questions, {minutes} minutes")
    sys.exit(EXIT_CODE_PASS)


@app.command("exam-start")
def exam_start(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Exam session")
):
    """Start an exam, or show the questions of one already started."""
    service = _state(ctx).exams()
    try:
        session = service.start(session_id)
    except EduVoiceError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]{session.title}[/bold] ({session.status.value})")
    for index, question in enumerate(session.questions):
        console.print(f"{index}. {question}")
    console.print(f"\nTime remaining: {service.remaining_seconds(session)}s")
    sys.exit(EXIT_CODE_PASS)


@app.command("exam-answer")
def exam_answer(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Exam session"),
    index: int = typer.Argument(..., help="Question number"),
    answer: str = typer.Argument(..., help="Your answer")
):
    """Record an answer while the exam is running."""
    try:
        _state(ctx).exams().record_answer(session_id, index, answer)
    except (EduVoiceError, IndexError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Answer {index} saved")
    sys.exit(EXIT_CODE_PASS)


@app.command("exam-submit")
def exam_submit(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Exam session"),
    document: str = typer.Argument(..., help="Document the quiz was built from"),
    reason: str = typer.Option(MANUAL, "--reason", "-r", help="manual or timer_expired"),
    api_key: Optional[str] = typer.Option(None, "--api-key", envvar="EDUVOICE_USER_API_KEY")
):
    """Submit an exam for evaluation."""
    try:
        service = _state(ctx).exams(_read_document(document), api_key)
        session = service.finish(session_id, reason)
    except InsufficientTokens as e:
        console.print(f"[red]Insufficient tokens:[/] {e.required:,} required, "
                      f"{e.balance:,} available")
        sys.exit(EXIT_CODE_INSUFFICIENT_TOKENS)
    except Exception as e:
        console.print(f"[red]Evaluation failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]{session.title}[/bold] ({session.status.value})")
    if session.overall_score is not None:
        console.print(f"Score: {session.overall_score:g}/{session.max_score}")
        console.print(session.overall_feedback or "")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
