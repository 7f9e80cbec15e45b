"""plans, canonical lessons and ownership mapping

Revision ID: 0001_lessons_baseline
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_lessons_baseline"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON(none_as_null=True).with_variant(postgresql.JSONB(none_as_null=True), "postgresql")


def upgrade() -> None:
    # --- plans ---
    op.create_table(
        "plan",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("theme", sa.String(200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_plan_id", "plan", ["id"])

    op.create_table(
        "plan_item",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("plan_id", sa.Integer, sa.ForeignKey("plan.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sequence_index", sa.Integer, nullable=False),
        sa.Column("references_text", JSONType, nullable=False),
        sa.Column("translation", sa.String(16), nullable=False, server_default="ESV"),
        sa.Column(
            "status",
            sa.Enum("pending", "published", name="planitemstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("plan_id", "sequence_index", name="uq_plan_item_sequence"),
    )
    op.create_index("ix_plan_item_id", "plan_item", ["id"])
    op.create_index("ix_plan_item_plan_id", "plan_item", ["plan_id"])

    # --- canonical lessons: one per (passage, translation) ---
    op.create_table(
        "lesson",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("passage_canonical", sa.String(255), nullable=False),
        sa.Column("translation", sa.String(16), nullable=False),
        sa.Column("passage_text", sa.Text, nullable=True),
        sa.Column("content_json", JSONType, nullable=False),
        sa.Column("story_manifest_json", JSONType, nullable=False),
        sa.Column("quiz_json", JSONType, nullable=False),
        sa.Column("audio_manifest_json", JSONType, nullable=True),
        sa.Column("share_slug", sa.String(64), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("passage_canonical", "translation", name="uq_lesson_canonical_translation"),
    )
    op.create_index("ix_lesson_id", "lesson", ["id"])
    op.create_index("ix_lesson_share_slug", "lesson", ["share_slug"], unique=True)

    # --- ownership mapping ---
    op.create_table(
        "plan_item_lesson",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("plan_item_id", sa.Integer, sa.ForeignKey("plan_item.id", ondelete="CASCADE"),
                  nullable=False, unique=True),
        sa.Column("lesson_id", sa.Integer, sa.ForeignKey("lesson.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_plan_item_lesson_lesson", "plan_item_lesson", ["lesson_id"])


def downgrade() -> None:
    op.drop_index("ix_plan_item_lesson_lesson", table_name="plan_item_lesson")
    op.drop_table("plan_item_lesson")
    op.drop_index("ix_lesson_share_slug", table_name="lesson")
    op.drop_index("ix_lesson_id", table_name="lesson")
    op.drop_table("lesson")
    op.drop_index("ix_plan_item_plan_id", table_name="plan_item")
    op.drop_index("ix_plan_item_id", table_name="plan_item")
    op.drop_table("plan_item")
    op.drop_index("ix_plan_id", table_name="plan")
    op.drop_table("plan")
    sa.Enum(name="planitemstatus").drop(op.get_bind(), checkfirst=True)
