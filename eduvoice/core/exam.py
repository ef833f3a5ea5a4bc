"""
Exam session state machine.

NOT_STARTED -> IN_PROGRESS -> EVALUATING -> COMPLETED
                              EVALUATING -> ERROR_EVALUATING -> EVALUATING (retry)

Every transition is a compare-and-set on the stored status, so when a
manual submission and an expired countdown race only one of them moves
the session to EVALUATING; the other becomes a no-op. The client countdown
is advisory: submissions are checked here against the recorded start time.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List

from eduvoice.observability import get_logger
from eduvoice.storage.base import ExamStore
from eduvoice.storage.models import ExamSession, ExamStatus

from .errors import EduVoiceError
from .schemas import QuizEvaluation, QuizGeneration

logger = get_logger(__name__)

MANUAL = "manual"
TIMER_EXPIRED = "timer_expired"
SUBMIT_REASONS = (MANUAL, TIMER_EXPIRED)


class ExamNotFound(EduVoiceError):
    def __init__(self, session_id: str):
        super().__init__(f"Exam session not found: {session_id}")
        self.session_id = session_id


class InvalidTransition(EduVoiceError):
    def __init__(self, session_id: str, status: ExamStatus, action: str):
        super().__init__(f"Cannot {action} exam {session_id} in status {status.value}")
        self.session_id = session_id
        self.status = status


class ExamTimingError(EduVoiceError):
    """Submission timing disagrees with the server-side clock."""
    def __init__(self, session_id: str, message: str, elapsed_seconds: float):
        super().__init__(f"Exam {session_id}: {message}")
        self.session_id = session_id
        self.elapsed_seconds = elapsed_seconds


Evaluator = Callable[[ExamSession], QuizEvaluation]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def merge_results(session: ExamSession, evaluation: QuizEvaluation) -> List[Dict[str, Any]]:
    """Align evaluator feedback with the session's questions.

    Feedback is matched by question text, then by position. Questions the
    evaluator skipped score 0 with a placeholder comment.
    """
    by_text = {d.question_text: d for d in evaluation.detailed_feedback}
    answers = session.answers_in_order()
    results = []
    for index, question in enumerate(session.questions):
        detail = by_text.get(question)
        if detail is None and index < len(evaluation.detailed_feedback):
            detail = evaluation.detailed_feedback[index]
        results.append({
            "question_text": question,
            "user_answer": answers[index] or "Not answered",
            "correct_answer": detail.correct_answer if detail else None,
            "ai_feedback": detail.ai_feedback if detail else "No AI feedback provided for this question.",
            "is_correct": detail.is_correct if detail else False,
            "score": detail.score if detail else 0,
        })
    return results


class ExamSessionService:
    """Drives exam sessions through their lifecycle.

    Args:
        store: Exam session store
        evaluator: Scores a submitted session
        grace_seconds: Allowed clock skew around the exam deadline
        clock: Returns the current time (timezone-aware)
    """

    def __init__(
        self,
        store: ExamStore,
        evaluator: Evaluator,
        grace_seconds: int = 30,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.store = store
        self.evaluator = evaluator
        self.grace = timedelta(seconds=grace_seconds)
        self.clock = clock

    def create_session(
        self,
        user_id: str,
        title: str,
        quiz: QuizGeneration,
        duration_minutes: int
    ) -> ExamSession:
        """Store a freshly generated quiz as a NOT_STARTED session."""
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be > 0")
        session = ExamSession(
            session_id=uuid.uuid4().hex,
            user_id=user_id,
            title=title,
            questions=list(quiz.questions),
            correct_answers=list(quiz.correct_answers),
            duration_minutes=duration_minutes
        )
        self.store.create_session(session)
        logger.info("exam_created", session_id=session.session_id,
                    user_id=user_id, questions=len(session.questions))
        return session

    def get_session(self, session_id: str) -> ExamSession:
        session = self.store.get_session(session_id)
        if session is None:
            raise ExamNotFound(session_id)
        return session

    def start(self, session_id: str) -> ExamSession:
        """Record the start time on first load; later loads change nothing."""
        session = self.get_session(session_id)
        if session.status is not ExamStatus.NOT_STARTED:
            return session
        now = self.clock()
        if self.store.transition(session_id, ExamStatus.NOT_STARTED,
                                 ExamStatus.IN_PROGRESS, {"started_at": now}):
            logger.info("exam_started", session_id=session_id)
        return self.get_session(session_id)

    def remaining_seconds(self, session: ExamSession) -> int:
        """Advisory countdown value for the client."""
        duration = timedelta(minutes=session.duration_minutes)
        if session.started_at is None:
            return int(duration.total_seconds())
        remaining = duration - (self.clock() - session.started_at)
        return max(0, int(remaining.total_seconds()))

    def record_answer(self, session_id: str, index: int, answer: str) -> ExamSession:
        """Store an answer while the exam is in progress.

        Outside IN_PROGRESS this is a no-op.

        Raises:
            IndexError: If index is not a question position
            ExamTimingError: If the exam deadline has passed
        """
        session = self.get_session(session_id)
        if session.status is not ExamStatus.IN_PROGRESS:
            logger.debug("exam_answer_ignored", session_id=session_id,
                         status=session.status.value)
            return session
        if not 0 <= index < len(session.questions):
            raise IndexError(f"Question index {index} out of range")

        elapsed = self._elapsed(session)
        if elapsed > self._deadline(session) + self.grace:
            raise ExamTimingError(session_id, "exam time is over",
                                  elapsed.total_seconds())

        answers = dict(session.answers)
        answers[index] = answer
        self.store.update_answers(session_id, answers, ExamStatus.IN_PROGRESS)
        return self.get_session(session_id)

    def finish(self, session_id: str, reason: str = MANUAL) -> ExamSession:
        """Submit the exam and evaluate it.

        Manual submission and timer expiry share this path. Only the first
        caller moves the session to EVALUATING; any later call, or a call on
        a session already past IN_PROGRESS, returns the session unchanged.
        A submission after the deadline is still evaluated, using only the
        answers stored before the deadline.

        Raises:
            ValueError: Unknown reason
            ExamTimingError: A timer expiry reported before the deadline
                minus grace
            Exception: Whatever the evaluator raised; the session is left
                in ERROR_EVALUATING
        """
        if reason not in SUBMIT_REASONS:
            raise ValueError(f"reason must be one of {SUBMIT_REASONS}")

        session = self.get_session(session_id)
        if session.status is not ExamStatus.IN_PROGRESS:
            logger.info("exam_finish_ignored", session_id=session_id,
                        status=session.status.value, reason=reason)
            return session

        self._check_timing(session, reason)

        if not self.store.transition(session_id, ExamStatus.IN_PROGRESS,
                                     ExamStatus.EVALUATING):
            logger.info("exam_finish_lost_race", session_id=session_id, reason=reason)
            return self.get_session(session_id)

        logger.info("exam_submitted", session_id=session_id, reason=reason)
        return self._evaluate(self.get_session(session_id))

    def retry_evaluation(self, session_id: str) -> ExamSession:
        """Re-run scoring for a session whose evaluation failed."""
        session = self.get_session(session_id)
        if session.status is not ExamStatus.ERROR_EVALUATING:
            raise InvalidTransition(session_id, session.status, "retry evaluation of")
        if not self.store.transition(session_id, ExamStatus.ERROR_EVALUATING,
                                     ExamStatus.EVALUATING):
            return self.get_session(session_id)
        logger.info("exam_evaluation_retry", session_id=session_id)
        return self._evaluate(self.get_session(session_id))

    def _evaluate(self, session: ExamSession) -> ExamSession:
        try:
            evaluation = self.evaluator(session)
            patch = {
                "overall_score": evaluation.overall_score,
                "max_score": len(session.questions),
                "overall_feedback": evaluation.overall_feedback,
                "results": merge_results(session, evaluation),
                "completed_at": self.clock(),
            }
            if not self.store.transition(session.session_id, ExamStatus.EVALUATING,
                                         ExamStatus.COMPLETED, patch):
                current = self.get_session(session.session_id)
                raise InvalidTransition(session.session_id, current.status, "complete")
        except Exception as exc:
            logger.error("exam_evaluation_failed", session_id=session.session_id,
                         error=str(exc))
            self.store.transition(
                session.session_id,
                ExamStatus.EVALUATING,
                ExamStatus.ERROR_EVALUATING,
                {"overall_feedback": f"Failed to process evaluation: {str(exc)[:200]}"}
            )
            raise

        logger.info("exam_completed", session_id=session.session_id,
                    score=evaluation.overall_score)
        return self.get_session(session.session_id)

    def _elapsed(self, session: ExamSession) -> timedelta:
        if session.started_at is None:
            raise InvalidTransition(session.session_id, session.status, "time")
        return self.clock() - session.started_at

    def _deadline(self, session: ExamSession) -> timedelta:
        return timedelta(minutes=session.duration_minutes)

    def _check_timing(self, session: ExamSession, reason: str) -> None:
        elapsed = self._elapsed(session)
        deadline = self._deadline(session)
        if elapsed > deadline + self.grace:
            # Answers after the deadline were already refused by record_answer
            logger.warning("exam_submitted_late", session_id=session.session_id,
                           reason=reason, elapsed_seconds=elapsed.total_seconds())
        elif reason == TIMER_EXPIRED and elapsed < deadline - self.grace:
            raise ExamTimingError(session.session_id,
                                  "timer expiry reported before the deadline",
                                  elapsed.total_seconds())
