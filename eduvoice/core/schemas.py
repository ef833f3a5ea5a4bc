"""
Structured output schemas for the AI flows.

Each model describes the JSON a provider must return for one feature.
Validators reject results that parse but carry nothing usable.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Output(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class TopicLecture(_Output):
    lecture_content: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    youtube_video_links: List[str] = Field(default_factory=list)


class QuizGeneration(_Output):
    questions: List[str] = Field(..., min_length=1)
    correct_answers: List[str] = Field(..., min_length=1)
    extracted_topic_guess: Optional[str] = None

    @field_validator("questions")
    @classmethod
    def _no_blank_questions(cls, questions: List[str]) -> List[str]:
        if any(not q.strip() for q in questions):
            raise ValueError("questions cannot be blank")
        return questions

    @model_validator(mode="after")
    def _answers_match_questions(self) -> "QuizGeneration":
        if len(self.questions) != len(self.correct_answers):
            raise ValueError(
                f"{len(self.questions)} questions but "
                f"{len(self.correct_answers)} correct answers"
            )
        return self


class QuestionResult(_Output):
    question_text: str
    user_answer: Optional[str] = None
    is_correct: bool
    score: float = Field(..., ge=0, le=1)
    correct_answer: str
    ai_feedback: str


class QuizEvaluation(_Output):
    overall_score: float = Field(..., ge=0)
    overall_feedback: str = Field(..., min_length=1)
    detailed_feedback: List[QuestionResult] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _score_within_question_count(self) -> "QuizEvaluation":
        if self.overall_score > len(self.detailed_feedback):
            raise ValueError(
                f"overall_score {self.overall_score} exceeds "
                f"{len(self.detailed_feedback)} questions"
            )
        return self


class InterviewProgression(_Output):
    feedback_on_last_answer: str
    next_question: str = Field(..., min_length=1)


class QuestionFeedback(_Output):
    question: str
    answer: str
    specific_feedback: str
    question_score: float = Field(..., ge=0, le=10)


class FinalInterviewFeedback(_Output):
    overall_score: float = Field(..., ge=0, le=100)
    overall_summary: str = Field(..., min_length=1)
    detailed_feedback: List[QuestionFeedback] = Field(default_factory=list)
    closing_remark: str


class MockInterviewFeedback(_Output):
    overall_feedback: str = Field(..., min_length=1)
    strengths: List[str] = Field(default_factory=list)
    areas_for_improvement: List[str] = Field(default_factory=list)
