"""
Chat messages for each AI flow.

Every prompt asks for a JSON object whose keys match the schema in
schemas.py.
"""

from typing import Dict, List, Optional, Sequence, Tuple

Messages = List[Dict[str, str]]

LECTURE_SYSTEM = (
    "You are an expert educator. Write a clear, well-structured lecture on the "
    "requested topic for a motivated self-learner."
)

QUIZ_GENERATION_SYSTEM = (
    "You are an AI assistant specializing in creating educational quizzes from "
    "documents. Questions must be clear, unambiguous and directly relevant to "
    "the core concepts of the document. Answers must be concise, factual and "
    "based solely on the document."
)

QUIZ_EVALUATION_SYSTEM = (
    "You are an AI Quiz Evaluator. For each question, determine the correct "
    "answer from the document and compare the user's answer to it. Be strict: "
    "partial, vague or incomplete answers are incorrect (score 0); accurate and "
    "complete answers are correct (score 1)."
)

INTERVIEWER_SYSTEM = (
    "You are a professional AI interviewer conducting a mock job interview. "
    "Base your questions on the candidate's resume and the job description."
)

INTERVIEW_COACH_SYSTEM = (
    "You are an AI interview coach. Analyze the candidate's resume and their "
    "responses based on the provided job description."
)


def _messages(system: str, user: str) -> Messages:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def _history(exchanges: Sequence[Tuple[str, str]]) -> str:
    return "\n---\n".join(f"Question: {q}\nAnswer: {a}" for q, a in exchanges)


def topic_lecture(topic: str) -> Messages:
    return _messages(LECTURE_SYSTEM, (
        f"Topic: {topic}\n\n"
        "Respond with a JSON object with keys:\n"
        '- "lecture_content": the full lecture text\n'
        '- "summary": a short summary of the lecture\n'
        '- "youtube_video_links": a list of relevant YouTube video URLs'
    ))


def quiz_generation(document_text: str, num_questions: int) -> Messages:
    return _messages(QUIZ_GENERATION_SYSTEM, (
        f"Generate a quiz with exactly {num_questions} questions from the document "
        "below, each with its correct answer, and guess the document's main topic.\n\n"
        "Respond with a JSON object with keys:\n"
        '- "questions": list of question strings\n'
        '- "correct_answers": list of answers, same length and order as questions\n'
        '- "extracted_topic_guess": the main topic of the document\n\n'
        f"Document Content:\n{document_text}"
    ))


def quiz_evaluation(
    document_text: str,
    questions: Sequence[str],
    user_answers: Sequence[str],
    reference_answers: Optional[Sequence[str]] = None
) -> Messages:
    pairs = []
    for index, question in enumerate(questions):
        answer = user_answers[index] if index < len(user_answers) else ""
        entry = f"Question: {question}\nUser's Answer: {answer or 'No answer provided'}"
        if reference_answers and index < len(reference_answers):
            entry += f"\nReference Answer: {reference_answers[index]}"
        pairs.append(entry)

    return _messages(QUIZ_EVALUATION_SYSTEM, (
        f"Document Content:\n{document_text}\n\n"
        "Quiz Questions and User's Answers:\n" + "\n---\n".join(pairs) + "\n\n"
        "Respond with a JSON object with keys:\n"
        '- "overall_score": sum of the individual scores\n'
        '- "overall_feedback": concise summary of the performance\n'
        '- "detailed_feedback": list of objects with "question_text", '
        '"user_answer", "is_correct", "score" (0 or 1), "correct_answer", '
        '"ai_feedback"'
    ))


def interview_progression(
    resume_text: str,
    job_description: str,
    history: Sequence[Tuple[str, str]]
) -> Messages:
    return _messages(INTERVIEWER_SYSTEM, (
        f"Job Description: {job_description}\n\nResume:\n{resume_text}\n\n"
        f"Interview so far (most recent last):\n{_history(history)}\n\n"
        "Give constructive feedback on the most recent answer and ask the next "
        "question. Respond with a JSON object with keys "
        '"feedback_on_last_answer" and "next_question".'
    ))


def final_interview_feedback(
    resume_text: str,
    job_description: str,
    history: Sequence[Tuple[str, str]]
) -> Messages:
    return _messages(INTERVIEWER_SYSTEM, (
        f"Job Description: {job_description}\n\nResume:\n{resume_text}\n\n"
        f"Complete interview:\n{_history(history)}\n\n"
        "Evaluate the whole interview. Respond with a JSON object with keys:\n"
        '- "overall_score": 0 to 100\n'
        '- "overall_summary": key strengths and areas for improvement\n'
        '- "detailed_feedback": list of objects with "question", "answer", '
        '"specific_feedback", "question_score" (0 to 10)\n'
        '- "closing_remark": a brief professional closing remark'
    ))


def mock_interview(
    resume_text: str,
    job_description: str,
    responses: Sequence[str]
) -> Messages:
    answers = "\n".join(f"- {r}" for r in responses)
    return _messages(INTERVIEW_COACH_SYSTEM, (
        f"Job Description: {job_description}\n\nResume:\n{resume_text}\n\n"
        f"Candidate Responses:\n{answers}\n\n"
        "Respond with a JSON object with keys \"overall_feedback\", "
        '"strengths" (list) and "areas_for_improvement" (list).'
    ))
