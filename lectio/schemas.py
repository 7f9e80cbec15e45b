import re
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from lectio.settings.config import settings

PageType = Literal["cover", "content", "passage", "takeaways", "cta"]
OutcomeStatus = Literal["reused", "created", "error"]

_LETTER_ANSWER = re.compile(r"^\(?([A-Da-d])[.)]?$")


# =========================
# PASSAGES
# =========================
class PassagePayload(BaseModel):
    reference: str          # what was asked for
    canonical: str          # what the provider says it is
    text: str
    translation: str


# =========================
# GENERATED CONTENT
# =========================
class QuizQuestion(BaseModel):
    q: str = Field(min_length=1)
    choices: List[str]
    answer: str
    explanation: str = Field(min_length=1)

    @field_validator("explanation")
    @classmethod
    def _explanation_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("quiz explanation must not be blank")
        return v.strip()

    @model_validator(mode="before")
    @classmethod
    def _answer_letter_to_text(cls, data: Any) -> Any:
        """Models sometimes answer "B" instead of the text of choice B."""
        if not isinstance(data, dict):
            return data
        choices = data.get("choices")
        answer = data.get("answer")
        if not isinstance(choices, list) or not isinstance(answer, str) or answer in choices:
            return data
        m = _LETTER_ANSWER.match(answer.strip())
        if m:
            idx = ord(m.group(1).upper()) - ord("A")
            if idx < len(choices):
                data = {**data, "answer": choices[idx]}
        return data

    @model_validator(mode="after")
    def _check_choices(self):
        if len(self.choices) != 4:
            raise ValueError(f"quiz question must have exactly 4 choices, got {len(self.choices)}")
        if any(not (c or "").strip() for c in self.choices):
            raise ValueError("quiz choices must be non-empty")
        if self.answer not in self.choices:
            raise ValueError(f"quiz answer {self.answer!r} is not one of the choices")
        return self


class LessonContent(BaseModel):
    """Teaching payload returned by the content generator, validated at the boundary."""
    intro: str = Field(min_length=1)
    context: str = Field(min_length=1)
    body: str = Field(min_length=1)
    conclusion: str = Field(min_length=1)
    key_takeaways: List[str] = Field(min_length=1, max_length=5)
    reflection_prompts: List[str] = Field(min_length=2, max_length=3)
    discussion_questions: List[str] = Field(min_length=3, max_length=5)
    quiz: List[QuizQuestion] = Field(min_length=3, max_length=5)

    @field_validator("intro", "context", "body", "conclusion")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("key_takeaways", "reflection_prompts", "discussion_questions")
    @classmethod
    def _no_blank_items(cls, v: List[str]) -> List[str]:
        if any(not (s or "").strip() for s in v):
            raise ValueError("list items must not be blank")
        return [s.strip() for s in v]


# =========================
# STORY MANIFEST
# =========================
class CallToAction(BaseModel):
    text: str
    href: str


class PageContent(BaseModel):
    title: Optional[str] = None
    text: Optional[str] = None
    bullets: Optional[List[str]] = None
    cta: Optional[CallToAction] = None


class StoryPage(BaseModel):
    type: PageType
    content: PageContent


class StoryMetadata(BaseModel):
    title: str
    reference: str
    translation: str


class StoryManifest(BaseModel):
    pages: List[StoryPage]
    metadata: StoryMetadata


# =========================
# AUDIO MANIFEST
# =========================
class AudioPage(BaseModel):
    page_index: int
    page_type: PageType
    audio_url: str
    duration: int           # seconds, estimated
    file_size: int          # bytes
    text_hash: str          # md5 of the narrated text


class AudioManifest(BaseModel):
    version: str = "1.0"
    generated_at: datetime
    teaching_voice_id: str
    scripture_voice_id: str
    pages: List[AudioPage]


# =========================
# GENERATION RESULTS
# =========================
class ItemOutcome(BaseModel):
    item_id: int
    index: Optional[int] = None
    status: OutcomeStatus
    lesson_id: Optional[int] = None
    share_slug: Optional[str] = None
    reference: Optional[str] = None
    error: Optional[str] = None


class Progress(BaseModel):
    completed: int
    total: int
    remaining: int


class GenerationResult(Progress):
    all_complete: bool
    results: List[ItemOutcome] = []


# =========================
# API BODIES
# =========================
class PlanItemCreate(BaseModel):
    references: List[str] = Field(min_length=1)
    translation: str = "ESV"


class PlanCreate(BaseModel):
    title: str = Field(min_length=1)
    theme: Optional[str] = None
    items: List[PlanItemCreate] = []


class PlanItemRead(BaseModel):
    id: int
    sequence_index: int
    references_text: List[str]
    translation: str
    status: str

    @field_validator("status", mode="before")
    @classmethod
    def _enum_value(cls, v: Any) -> Any:
        return getattr(v, "value", v)

    class Config:
        from_attributes = True


class PlanRead(BaseModel):
    id: int
    title: str
    theme: Optional[str] = None
    items: List[PlanItemRead] = []

    class Config:
        from_attributes = True


class GenerateOneRequest(BaseModel):
    plan_item_id: int


class GenerateBatchRequest(BaseModel):
    plan_id: int
    batch_size: Optional[int] = Field(default=None, ge=1, le=settings.MAX_BATCH_SIZE)
    background: bool = False


class GenerateNextRequest(BaseModel):
    plan_id: int


class LessonRead(BaseModel):
    id: int
    passage_canonical: str
    translation: str
    share_slug: str
    story_manifest_json: StoryManifest
    quiz_json: List[QuizQuestion]
    audio_manifest_json: Optional[AudioManifest] = None
    published_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MapCachedResult(BaseModel):
    mapped: int
    already_mapped: int
    not_found: int


class BackfillAudioRequest(BaseModel):
    limit: int = Field(default=10, ge=1, le=100)


class BackfillAudioResult(BaseModel):
    attempted: int
    attached: int
