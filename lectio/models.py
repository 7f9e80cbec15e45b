from sqlalchemy import (
    Column, Integer, String, ForeignKey, Text, DateTime, func,
    UniqueConstraint, Index, JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy import Enum as SAEnum
import enum

from .database import Base

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class PlanItemStatus(str, enum.Enum):
    pending = "pending"
    published = "published"


# ---------------------------
# PLANS
# ---------------------------
class Plan(Base):
    __tablename__ = "plan"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    theme = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship(
        "PlanItem",
        back_populates="plan",
        order_by="PlanItem.sequence_index.asc()",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class PlanItem(Base):
    """One scheduled occurrence of a reading inside a plan."""
    __tablename__ = "plan_item"

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("plan.id", ondelete="CASCADE"), index=True, nullable=False)
    sequence_index = Column(Integer, nullable=False)
    references_text = Column(JSONType, nullable=False)   # list[str], at least one
    translation = Column(String(16), nullable=False, default="ESV")
    status = Column(SAEnum(PlanItemStatus), default=PlanItemStatus.pending, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    plan = relationship("Plan", back_populates="items")

    __table_args__ = (
        UniqueConstraint("plan_id", "sequence_index", name="uq_plan_item_sequence"),
    )


# ---------------------------
# CANONICAL LESSONS
# ---------------------------
class Lesson(Base):
    """
    Produced once per (canonical reference, translation) and shared by every
    plan item that resolves to the same passage. Only audio may be attached later.
    """
    __tablename__ = "lesson"

    id = Column(Integer, primary_key=True, index=True)
    passage_canonical = Column(String(255), nullable=False)   # normalized reference
    translation = Column(String(16), nullable=False)
    passage_text = Column(Text, nullable=True)

    content_json = Column(JSONType, nullable=False)
    story_manifest_json = Column(JSONType, nullable=False)
    quiz_json = Column(JSONType, nullable=False)
    audio_manifest_json = Column(JSONType, nullable=True)

    share_slug = Column(String(64), unique=True, nullable=False, index=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("passage_canonical", "translation", name="uq_lesson_canonical_translation"),
    )


# ---------------------------
# OWNERSHIP MAPPING
# ---------------------------
class PlanItemLesson(Base):
    __tablename__ = "plan_item_lesson"

    id = Column(Integer, primary_key=True)
    # one mapping per item; many items per lesson
    plan_item_id = Column(Integer, ForeignKey("plan_item.id", ondelete="CASCADE"), unique=True, nullable=False)
    lesson_id = Column(Integer, ForeignKey("lesson.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    plan_item = relationship("PlanItem")
    lesson = relationship("Lesson")

    __table_args__ = (
        Index("ix_plan_item_lesson_lesson", "lesson_id"),
    )
