"""Database and request models using Pydantic for validation."""

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..config.settings import settings


TestStatus = Literal["draft", "deployed", "completed"]
AttemptStatus = Literal["in_progress", "completed"]

TERMINATION_NORMAL = "normal"
TERMINATION_AUTO_EXPIRED = "server_auto_expired"
TERMINATION_MAX_RESUMES = "max_resumes_exceeded"


# ============ QUESTION ============
class SubQuestion(BaseModel):
    """A leaf question: scored on its own."""
    model_config = ConfigDict(extra="ignore")

    id: str
    text: str = ""
    type: Literal["mcq", "msq", "fillblank"]
    marks: float = Field(default=1, ge=0)
    negative_marks: float = Field(default=0, ge=0)
    is_grace: bool = False
    image: Optional[str] = None
    latex_content: bool = False

    # mcq / msq
    options: List[str] = []
    correct_indices: List[int] = []
    shuffle_options: bool = False

    # fillblank
    fill_blank_answer: Optional[str] = None
    case_sensitive: bool = False
    is_number_range: bool = False
    number_range_min: Optional[float] = None
    number_range_max: Optional[float] = None

    solution_text: Optional[str] = None


class Question(SubQuestion):
    """
    A top-level test question.

    Comprehension questions carry a passage and sub-questions; their own
    ``marks`` are never scored, only the sub-questions are.
    """
    type: Literal["mcq", "msq", "fillblank", "comprehension"]
    topic: Optional[str] = None
    subtopic: Optional[str] = None
    comprehension_text: Optional[str] = None
    comprehension_image: Optional[str] = None
    sub_questions: List[SubQuestion] = []


# ============ ANSWER VALUES ============
class McqAnswer(BaseModel):
    kind: Literal["mcq"] = "mcq"
    index: int


class MsqAnswer(BaseModel):
    kind: Literal["msq"] = "msq"
    indices: List[int]


class FillBlankAnswer(BaseModel):
    kind: Literal["fillblank"] = "fillblank"
    value: Union[str, int, float]


AnswerValue = Union[McqAnswer, MsqAnswer, FillBlankAnswer]

# What a client may send for a single answer
RawAnswer = Union[int, float, str, List[int], None]


class GradeResult(BaseModel):
    is_correct: bool
    marks_awarded: float
    is_grace_awarded: bool = False


class Answer(BaseModel):
    """One stored answer inside an attempt."""
    model_config = ConfigDict(extra="ignore")

    question_id: str
    answer: RawAnswer = None
    is_correct: bool = False
    marks_awarded: float = 0
    adjustment_marks: float = 0
    is_grace_awarded: bool = False
    time_taken: float = 0


# ============ TEST ============
class DeploymentStudent(BaseModel):
    phone_number: str
    student_name: Optional[str] = None
    batch_name: Optional[str] = None


class Deployment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    batches: List[str] = []
    students: List[DeploymentStudent] = []
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration_minutes: Optional[int] = None


class TestConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    shuffle_questions: bool = False
    max_questions_to_attempt: Optional[int] = None
    show_timer: bool = True
    allow_back_navigation: bool = True
    show_results: bool = True
    show_results_immediately: bool = True
    passing_percentage: float = settings.DEFAULT_PASSING_PERCENTAGE


class OnlineTest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    test_id: str
    title: str
    description: Optional[str] = None
    questions: List[Question] = []
    deployment: Deployment = Field(default_factory=Deployment)
    config: TestConfig = Field(default_factory=TestConfig)
    status: TestStatus = "draft"
    created_by: str
    folder_id: Optional[str] = None
    total_marks: float = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ============ ATTEMPT ============
class TestAttempt(BaseModel):
    model_config = ConfigDict(extra="ignore")

    attempt_id: str
    test_id: str
    student_phone: str
    student_name: str = "Unknown"
    batch_name: str = ""
    status: AttemptStatus = "in_progress"
    started_at: Optional[str] = None
    submitted_at: Optional[str] = None
    questions: List[Question] = []  # snapshot of the served questions
    answers: List[Answer] = []
    score: float = 0
    percentage: float = 0
    time_spent_ms: int = 0
    grace_marks: float = 0
    grace_reason: str = ""
    warning_count: int = 0
    resume_count: int = 0
    termination_reason: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ============ ROSTER ============
class BatchStudent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    phone_number: str
    name: Optional[str] = None
    courses: List[str] = []
    created_at: Optional[str] = None


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    email: Optional[str] = None
    name: str = ""
    role: Literal["admin", "faculty", "student"] = "student"
    phone: Optional[str] = None


# ============ REQUESTS ============
class TestCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    questions: List[Question] = Field(min_length=1)
    config: TestConfig = Field(default_factory=TestConfig)
    folder_id: Optional[str] = None


class TestUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    config: Optional[TestConfig] = None
    folder_id: Optional[str] = None


class DeployRequest(BaseModel):
    batches: List[str] = []
    students: List[DeploymentStudent] = []
    start_time: str
    end_time: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_window(self):
        if not self.end_time and not self.duration_minutes:
            raise ValueError("Either end_time or duration_minutes is required.")
        return self


class QuestionsEdit(BaseModel):
    """Edit a test's questions; completed attempts are re-graded."""
    questions: List[Question] = Field(min_length=1)
    grace_marks: float = 0
    grace_reason: str = ""


class ReassignRequest(BaseModel):
    new_start_time: str
    new_end_time: str


class ResetAttemptsRequest(BaseModel):
    phones: List[str] = Field(min_length=1)


class MarkAdjustment(BaseModel):
    question_id: str
    adjustment_marks: float = 0


class AdjustMarksRequest(BaseModel):
    adjustments: List[MarkAdjustment]


class AnswerSave(BaseModel):
    answer: RawAnswer = None
    time_taken: float = 0


class AnswerItem(AnswerSave):
    question_id: str


class AutosaveRequest(BaseModel):
    answers: List[AnswerItem]
    time_spent_ms: Optional[int] = None


class SubmitRequest(BaseModel):
    answers: List[AnswerItem] = []
    time_spent_ms: Optional[int] = None
    warning_count: Optional[int] = None
    termination_reason: Optional[str] = None


__all__ = [
    "TestStatus",
    "AttemptStatus",
    "TERMINATION_NORMAL",
    "TERMINATION_AUTO_EXPIRED",
    "TERMINATION_MAX_RESUMES",
    "SubQuestion",
    "Question",
    "McqAnswer",
    "MsqAnswer",
    "FillBlankAnswer",
    "AnswerValue",
    "RawAnswer",
    "GradeResult",
    "Answer",
    "DeploymentStudent",
    "Deployment",
    "TestConfig",
    "OnlineTest",
    "TestAttempt",
    "BatchStudent",
    "User",
    "TestCreate",
    "TestUpdate",
    "DeployRequest",
    "QuestionsEdit",
    "ReassignRequest",
    "ResetAttemptsRequest",
    "MarkAdjustment",
    "AdjustMarksRequest",
    "AnswerSave",
    "AnswerItem",
    "AutosaveRequest",
    "SubmitRequest",
]
