# prepstream/schemas.py
import logging
import secrets
import string
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

MIXED = "Mix"
# subject assumed for remote items that omit one under a mixed selection
FALLBACK_REMOTE_SUBJECT = "Physics"

SUBJECTS: Dict[str, List[str]] = {
    "JEE": ["Physics", "Chemistry", "Maths"],
    "NEET": ["Physics", "Chemistry", "Biology"],
}

LANGUAGES: List[str] = [
    "English", "Hindi", "Gujarati", "Marathi", "Bengali", "Tamil", "Telugu",
    "Kannada", "Malayalam", "Punjabi", "Assamese", "Odia", "Urdu",
]

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_question_id() -> str:
    """Random 9-char base36 token, assigned client-side to every question."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))


class Origin(str, Enum):
    PROCEDURAL = "procedural"
    GENERATED = "generated"


class Filters(BaseModel):
    """Immutable filter snapshot; a new value marks a new generation epoch."""
    model_config = ConfigDict(frozen=True)

    exam: str = "JEE"
    subject: str = MIXED
    difficulty: int = Field(3, ge=1, le=5)
    language: str = "English"

    @model_validator(mode="after")
    def _check_catalogue(self):
        if self.exam not in SUBJECTS:
            raise ValueError(f"unknown exam type: {self.exam}")
        if self.subject != MIXED and self.subject not in SUBJECTS[self.exam]:
            raise ValueError(f"subject {self.subject} is not part of {self.exam}")
        if self.language not in LANGUAGES:
            raise ValueError(f"unsupported language: {self.language}")
        return self

    @property
    def is_mixed(self) -> bool:
        return self.subject == MIXED

    def subject_pool(self) -> List[str]:
        return list(SUBJECTS[self.exam]) if self.is_mixed else [self.subject]

    def with_exam(self, exam: str) -> "Filters":
        # switching exam invalidates the subject choice
        return Filters(exam=exam, subject=MIXED, difficulty=self.difficulty, language=self.language)


DEFAULT_FILTERS = Filters()


class Question(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_question_id, description="unique id for question")
    text: str
    options: List[str] = Field(..., min_length=4, max_length=4)
    correct_index: int = Field(..., ge=0, le=3, alias="correctIndex")
    solution: str = ""
    subject: str
    exam_type: str = Field(..., alias="examType")
    difficulty: int = Field(..., ge=1, le=5)
    origin: Origin


class RawQuestion(BaseModel):
    """One item as returned by the remote generation service."""
    text: str
    options: List[str] = Field(..., min_length=4, max_length=4)
    correctIndex: int = Field(..., ge=0, le=3)
    solution: str = ""
    subject: Optional[str] = None

    @field_validator("options", mode="before")
    @classmethod
    def _stringify_options(cls, value):
        # numeric answers ("4", "22") often come back as bare numbers
        if isinstance(value, list):
            return [str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v for v in value]
        return value

    @field_validator("solution", mode="before")
    @classmethod
    def _null_solution(cls, value):
        return "" if value is None else value


class GenerateRequest(BaseModel):
    filters: Filters
    count: int = Field(2, ge=1, le=10)


class GenerateResponse(BaseModel):
    questions: List[RawQuestion]


def valid_raw_questions(items: List[Any]) -> List[RawQuestion]:
    """Validates items one by one; items breaking the 4-option / 0..3 shape are dropped."""
    valid = []
    for position, item in enumerate(items):
        try:
            valid.append(RawQuestion.model_validate(item))
        except ValidationError as e:
            logger.warning("Dropping malformed question at position %d: %d error(s)", position, e.error_count())
    return valid
