"""
Grading engine - auto-grades objective answers (mcq, msq, fillblank).

Everything here is a pure function of the question definition and the
submitted value, so the same code path serves student submission, the
auto-completion sweeper and re-grading after a question edit.
"""

import math
import re
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import (
    Answer,
    AnswerValue,
    FillBlankAnswer,
    GradeResult,
    McqAnswer,
    MsqAnswer,
    Question,
    RawAnswer,
    SubQuestion,
)
from ..utils import format_percentage

_LEADING_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
_WHITESPACE = re.compile(r"\s+")


def is_blank_answer(raw: RawAnswer) -> bool:
    """None, an empty/whitespace string or an empty list count as unattempted."""
    if raw is None:
        return True
    if isinstance(raw, str):
        return raw.strip() == ""
    if isinstance(raw, list):
        return len(raw) == 0
    return False


def _as_index(raw) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    return None


def resolve_answer(question_type: str, raw: RawAnswer) -> Optional[AnswerValue]:
    """
    Turn a raw stored value into the answer variant its question type expects.

    Returns None when the value has the wrong shape for the question type;
    the caller grades that as a wrong answer.
    """
    if question_type == "mcq":
        index = _as_index(raw)
        return McqAnswer(index=index) if index is not None else None

    if question_type == "msq":
        if not isinstance(raw, list):
            return None
        indices = [_as_index(i) for i in raw]
        if any(i is None for i in indices):
            return None
        return MsqAnswer(indices=indices)

    if question_type == "fillblank":
        if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
            return None
        return FillBlankAnswer(value=raw)

    return None


def parse_number(value) -> Optional[float]:
    """Parse the leading number of an answer, ignoring all whitespace."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
    else:
        match = _LEADING_NUMBER.match(_WHITESPACE.sub("", str(value)))
        if not match:
            return None
        number = float(match.group(0))
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _normalize_text(value, case_sensitive: bool) -> str:
    text = _WHITESPACE.sub(" ", str(value).strip())
    return text if case_sensitive else text.lower()


def _check_mcq(question: SubQuestion, value: McqAnswer) -> bool:
    return bool(question.correct_indices) and value.index == question.correct_indices[0]


def _check_msq(question: SubQuestion, value: MsqAnswer) -> bool:
    return set(value.indices) == set(question.correct_indices)


def _check_fillblank(question: SubQuestion, value: FillBlankAnswer) -> bool:
    if question.is_number_range:
        number = parse_number(value.value)
        if number is None:
            return False
        low = question.number_range_min if question.number_range_min is not None else 0
        high = question.number_range_max if question.number_range_max is not None else 0
        return low <= number <= high

    if question.fill_blank_answer is None:
        return False
    return (
        _normalize_text(value.value, question.case_sensitive)
        == _normalize_text(question.fill_blank_answer, question.case_sensitive)
    )


_CHECKS = {
    "mcq": _check_mcq,
    "msq": _check_msq,
    "fillblank": _check_fillblank,
}


def grade_question(question: SubQuestion, raw: RawAnswer) -> GradeResult:
    """Grade one submitted value against one leaf question."""
    if question.type == "comprehension":
        # scored through its sub-questions only
        return GradeResult(is_correct=False, marks_awarded=0)

    if question.is_grace:
        return GradeResult(is_correct=True, marks_awarded=question.marks, is_grace_awarded=True)

    if is_blank_answer(raw):
        return GradeResult(is_correct=False, marks_awarded=0)

    value = resolve_answer(question.type, raw)
    is_correct = value is not None and _CHECKS[question.type](question, value)

    if is_correct:
        marks = question.marks
    else:
        marks = -question.negative_marks if question.negative_marks else 0.0
    return GradeResult(is_correct=is_correct, marks_awarded=marks)


def iter_leaf_questions(questions: Iterable[Question]) -> Iterable[SubQuestion]:
    """Yield every scored question; comprehension parents expand to their sub-questions."""
    for question in questions:
        if question.type == "comprehension":
            yield from question.sub_questions
        else:
            yield question


def build_question_map(questions: Iterable[Question]) -> Dict[str, SubQuestion]:
    return {q.id: q for q in iter_leaf_questions(questions)}


def served_total_marks(questions: Iterable[Question]) -> float:
    """Maximum marks for the question set actually served to a student."""
    return sum(q.marks for q in iter_leaf_questions(questions))


def source_questions(attempt_questions: List[Question], test_questions: List[Question]) -> List[Question]:
    """The attempt's own snapshot when it has one, else the live test's questions."""
    return attempt_questions if attempt_questions else test_questions


def grade_answers(answers: Iterable[Answer], questions: Iterable[Question]) -> List[Answer]:
    """
    Grade every stored answer against the given question set.

    Manual ``adjustment_marks`` survive re-grading; an answer whose question
    is not in the set scores zero instead of failing the whole attempt.
    """
    question_map = build_question_map(questions)
    graded = []
    for answer in answers:
        question = question_map.get(answer.question_id)
        if question is None:
            result = GradeResult(is_correct=False, marks_awarded=0)
        else:
            result = grade_question(question, answer.answer)
        graded.append(answer.model_copy(update={
            "is_correct": result.is_correct,
            "marks_awarded": result.marks_awarded,
            "is_grace_awarded": result.is_grace_awarded,
        }))
    return graded


def compute_score(answers: Iterable[Answer], grace_marks: float = 0) -> float:
    """Sum of awarded and adjustment marks plus grace marks, never below zero."""
    total = sum(a.marks_awarded + a.adjustment_marks for a in answers) + (grace_marks or 0)
    return max(0, total)


def compute_percentage(score: float, served_total: float, fallback_total: float = 0) -> int:
    total = served_total or fallback_total or 1
    return format_percentage(score, total)


def score_attempt(
    answers: Iterable[Answer],
    questions: List[Question],
    grace_marks: float = 0,
    fallback_total: float = 0,
) -> Tuple[List[Answer], float, int]:
    """
    Grade answers and aggregate them.

    Returns:
        (graded_answers, score, percentage)
    """
    graded = grade_answers(answers, questions)
    score = compute_score(graded, grace_marks)
    percentage = compute_percentage(score, served_total_marks(questions), fallback_total)
    return graded, score, percentage
