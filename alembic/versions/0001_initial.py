from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

user_plan = sa.Enum("FREE", "UNLIMITED", name="user_plan")
job_status = sa.Enum("PENDING", "SENT", "FAILED", "CANCELLED", name="job_status")


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=120), nullable=True),
        sa.Column("plan", user_plan, nullable=False, server_default="FREE"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_user_email", "user", ["email"], unique=True)

    op.create_table(
        "campaign",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("host", sa.String(length=255), nullable=False, server_default="DIRECT"),
        sa.Column("sender_ip_hash", sa.String(length=64), nullable=True),
        sa.Column("smtp_user_hash", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_campaign_user_id", "campaign", ["user_id"])
    op.create_index("ix_campaign_sender_ip_hash", "campaign", ["sender_ip_hash"])
    op.create_index("ix_campaign_smtp_user_hash", "campaign", ["smtp_user_hash"])

    op.create_table(
        "campaignattachment",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("campaign_id", sa.String(length=32), sa.ForeignKey("campaign.id"), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("content_type", sa.String(length=120), nullable=False),
        sa.Column("storage_key", sa.String(length=512), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_campaignattachment_campaign_id", "campaignattachment", ["campaign_id"])

    op.create_table(
        "emailjob",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("campaign_id", sa.String(length=32), sa.ForeignKey("campaign.id"), nullable=False),
        sa.Column("tracking_id", sa.String(length=64), nullable=False),
        sa.Column("recipient", sa.Text(), nullable=False),
        sa.Column("subject", sa.Text(), nullable=False),
        sa.Column("status", job_status, nullable=False, server_default="PENDING"),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_via_cron", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("open_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("survey_choice", sa.String(length=64), nullable=True),
        sa.Column("survey_clicked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_emailjob_campaign_id", "emailjob", ["campaign_id"])
    op.create_index("ix_emailjob_tracking_id", "emailjob", ["tracking_id"], unique=True)
    op.create_index("ix_emailjob_status", "emailjob", ["status"])
    op.create_index("ix_emailjob_scheduled_for", "emailjob", ["scheduled_for"])
    op.create_index("ix_emailjob_sent_at", "emailjob", ["sent_at"])

    op.create_table(
        "click",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email_job_id", sa.String(length=32), sa.ForeignKey("emailjob.id"), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_click_email_job_id", "click", ["email_job_id"])

    op.create_table(
        "usermonthlyusage",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("emails_sent", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_user_monthly_usage"),
    )
    op.create_index("ix_usermonthlyusage_user_id", "usermonthlyusage", ["user_id"])


def downgrade() -> None:
    op.drop_table("usermonthlyusage")
    op.drop_table("click")
    op.drop_table("emailjob")
    op.drop_table("campaignattachment")
    op.drop_table("campaign")
    op.drop_index("ix_user_email", table_name="user")
    op.drop_table("user")
    job_status.drop(op.get_bind(), checkfirst=True)
    user_plan.drop(op.get_bind(), checkfirst=True)
