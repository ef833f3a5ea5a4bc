"""
AI feature flows.

Each flow charges the feature's token cost, runs the credential fallback
chain against the provider and validates the structured result. Free
features (cost 0) skip the token gate entirely. Nothing is charged when no
credential is configured. Otherwise tokens are charged before the provider
is contacted and are not refunded if the call later fails.
"""

from typing import Any, Callable, Optional, Sequence, Tuple, Type

from eduvoice.observability import get_logger
from eduvoice.storage.models import ExamSession

from . import prompts
from .aggregator import NoValidOutput, T, finalize
from .documents import document_text
from .ledger import TokenLedger
from .pricing import (
    DEFAULT_PRICE_TABLE,
    INTERVIEW_FEEDBACK,
    INTERVIEW_PROGRESSION,
    MOCK_INTERVIEW,
    QUIZ_EVALUATION,
    QUIZ_GENERATION,
    TOPIC_LECTURE,
    TokenPriceTable,
)
from .schemas import (
    FinalInterviewFeedback,
    InterviewProgression,
    MockInterviewFeedback,
    QuizEvaluation,
    QuizGeneration,
    TopicLecture,
)
from .sequencer import CredentialCandidate, ProviderAttemptSequencer, build_candidates

logger = get_logger(__name__)

# Builds an object exposing generate_json(feature, messages) for a credential
ClientFactory = Callable[[CredentialCandidate], Any]
History = Sequence[Tuple[str, str]]


class EduVoiceFlows:
    """Entry points for every AI feature.

    Args:
        ledger: Token ledger used for the charge gate
        sequencer: Credential fallback runner
        client_factory: Creates a provider client for one credential
        prices: Token cost per feature
        platform_secret: Platform API key, tried after any user key
    """

    def __init__(
        self,
        ledger: TokenLedger,
        sequencer: ProviderAttemptSequencer,
        client_factory: ClientFactory,
        prices: TokenPriceTable = DEFAULT_PRICE_TABLE,
        platform_secret: Optional[str] = None
    ):
        self.ledger = ledger
        self.sequencer = sequencer
        self.client_factory = client_factory
        self.prices = prices
        self.platform_secret = platform_secret

    def generate_topic_lecture(
        self,
        user_id: str,
        topic: str,
        user_api_key: Optional[str] = None
    ) -> TopicLecture:
        if not topic.strip():
            raise ValueError("topic cannot be empty")
        return self._run(
            TOPIC_LECTURE, user_id, user_api_key,
            prompts.topic_lecture(topic), TopicLecture,
            description=f"Lecture generation: {topic}"
        )

    def generate_quiz(
        self,
        user_id: str,
        document: str,
        num_questions: int = 5,
        user_api_key: Optional[str] = None
    ) -> QuizGeneration:
        """Generate questions and answers from a PDF data URI or plain text."""
        if num_questions < 1:
            raise ValueError("num_questions must be >= 1")
        text = document_text(document)
        return self._run(
            QUIZ_GENERATION, user_id, user_api_key,
            prompts.quiz_generation(text, num_questions), QuizGeneration,
            description=f"Quiz generation: {num_questions} questions"
        )

    def evaluate_quiz(
        self,
        user_id: str,
        document: str,
        questions: Sequence[str],
        user_answers: Sequence[str],
        reference_answers: Optional[Sequence[str]] = None,
        user_api_key: Optional[str] = None
    ) -> QuizEvaluation:
        if not questions:
            raise ValueError("questions cannot be empty")
        text = document_text(document)
        return self._run(
            QUIZ_EVALUATION, user_id, user_api_key,
            prompts.quiz_evaluation(text, questions, user_answers, reference_answers),
            QuizEvaluation,
            description=f"Quiz evaluation: {len(questions)} questions"
        )

    def exam_evaluator(
        self,
        document: str,
        user_api_key: Optional[str] = None
    ) -> Callable[[ExamSession], QuizEvaluation]:
        """Evaluator for ExamSessionService bound to the exam's source document."""
        def evaluate(session: ExamSession) -> QuizEvaluation:
            return self.evaluate_quiz(
                session.user_id,
                document,
                session.questions,
                session.answers_in_order(),
                session.correct_answers or None,
                user_api_key
            )
        return evaluate

    def interview_next_question(
        self,
        user_id: str,
        resume: str,
        job_description: str,
        history: History,
        user_api_key: Optional[str] = None
    ) -> InterviewProgression:
        return self._run(
            INTERVIEW_PROGRESSION, user_id, user_api_key,
            prompts.interview_progression(document_text(resume), job_description, history),
            InterviewProgression,
            description="Interview progression"
        )

    def final_interview_feedback(
        self,
        user_id: str,
        resume: str,
        job_description: str,
        history: History,
        user_api_key: Optional[str] = None
    ) -> FinalInterviewFeedback:
        if not history:
            raise ValueError("history cannot be empty")
        return self._run(
            INTERVIEW_FEEDBACK, user_id, user_api_key,
            prompts.final_interview_feedback(document_text(resume), job_description, history),
            FinalInterviewFeedback,
            description="Final interview feedback"
        )

    def mock_interview(
        self,
        user_id: str,
        resume: str,
        job_description: str,
        responses: Sequence[str],
        user_api_key: Optional[str] = None
    ) -> MockInterviewFeedback:
        return self._run(
            MOCK_INTERVIEW, user_id, user_api_key,
            prompts.mock_interview(document_text(resume), job_description, responses),
            MockInterviewFeedback,
            description="Mock interview feedback"
        )

    def _run(
        self,
        feature: str,
        user_id: str,
        user_api_key: Optional[str],
        messages: prompts.Messages,
        schema: Type[T],
        description: str
    ) -> T:
        candidates = build_candidates(user_api_key, self.platform_secret)
        if not any(c.has_secret for c in candidates):
            logger.error("no_credentials_available", feature=feature, user_id=user_id)
            raise NoValidOutput("No provider API key is configured")

        cost = self.prices.get_cost(feature)
        if cost > 0:
            self.ledger.charge_or_skip(user_id, cost, description)

        def invoke(candidate: CredentialCandidate) -> Any:
            return self.client_factory(candidate).generate_json(feature, messages)

        result = self.sequencer.attempt(candidates, invoke)
        output = finalize(result, schema)
        logger.info("flow_completed", feature=feature, user_id=user_id,
                    source=result.source_label, attempts=result.attempts)
        return output
