"""core schema: users, media, credits, plugin, stations, payments

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("username", sa.String(length=30), nullable=True),
        sa.Column("full_name", sa.String(length=120), nullable=True),
        sa.Column("avatar_url", sa.String(length=500), nullable=True),
        sa.Column("bio", sa.String(length=500), nullable=True),
        sa.Column("credits", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("wallet_balance", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_generated", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("subscription_plan", sa.String(length=32), nullable=True),
        sa.Column("subscription_status", sa.String(length=32), nullable=False, server_default="inactive"),
        sa.Column("subscription_id", sa.String(length=128), nullable=True),
        sa.Column("subscription_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("razorpay_customer_id", sa.String(length=128), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=128), nullable=True),
        sa.Column("plugin_purchased", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)
    op.create_index("ix_users_subscription_id", "users", ["subscription_id"], unique=False)
    op.create_index("ix_users_stripe_customer_id", "users", ["stripe_customer_id"], unique=False)

    op.create_table(
        "media_items",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("track_id", sa.String(length=24), nullable=True),
        sa.Column("title", sa.String(length=100), nullable=True),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("genre", sa.String(length=40), nullable=True),
        sa.Column("generation_type", sa.String(length=32), nullable=False, server_default="music"),
        sa.Column("media_type", sa.String(length=16), nullable=False, server_default="audio"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="generating"),
        sa.Column("audio_url", sa.String(length=1000), nullable=True),
        sa.Column("image_url", sa.String(length=1000), nullable=True),
        sa.Column("video_url", sa.String(length=1000), nullable=True),
        sa.Column("storage_key", sa.String(length=255), nullable=True),
        sa.Column("output_json", sa.Text(), nullable=True),
        sa.Column("provider", sa.String(length=32), nullable=False, server_default="mock"),
        sa.Column("prediction_id", sa.String(length=128), nullable=True),
        sa.Column("credits_cost", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("plays", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("likes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("downloads", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("error_message", sa.String(length=255), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("track_id", name="uq_media_items_track_id"),
        sa.UniqueConstraint("prediction_id", name="uq_media_items_prediction_id"),
    )
    op.create_index("ix_media_items_user_created_at", "media_items", ["user_id", "created_at"], unique=False)
    op.create_index(
        "ix_media_items_public_status_created_at",
        "media_items",
        ["is_public", "status", "created_at"],
        unique=False,
    )

    op.create_table(
        "media_likes",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("media_id", sa.String(length=36), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["media_id"], ["media_items.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "media_id", name="uq_media_likes_user_media"),
    )
    op.create_index("ix_media_likes_media_id", "media_likes", ["media_id"], unique=False)

    op.create_table(
        "user_follows",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("follower_id", sa.String(length=64), nullable=False),
        sa.Column("following_id", sa.String(length=64), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["follower_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["following_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("follower_id", "following_id", name="uq_user_follows_pair"),
        sa.CheckConstraint("follower_id <> following_id", name="ck_user_follows_not_self"),
    )
    op.create_index("ix_user_follows_following_id", "user_follows", ["following_id"], unique=False)

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("message_type", sa.String(length=24), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("generation_type", sa.String(length=32), nullable=True),
        sa.Column("generation_id", sa.String(length=64), nullable=True),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_chat_messages_user_timestamp", "chat_messages", ["user_id", "timestamp"], unique=False)

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="success"),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("idempotency_key", sa.String(length=160), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_credit_transactions_idempotency_key"),
    )
    op.create_index(
        "ix_credit_transactions_user_created_at",
        "credit_transactions",
        ["user_id", "created_at"],
        unique=False,
    )
    op.create_index("ix_credit_transactions_user_type", "credit_transactions", ["user_id", "type"], unique=False)

    op.create_table(
        "plugin_tokens",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=80), nullable=False, server_default="Ableton Plugin"),
        sa.Column("token_prefix", sa.String(length=16), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_hash", name="uq_plugin_tokens_token_hash"),
    )
    op.create_index("ix_plugin_tokens_user_active", "plugin_tokens", ["user_id", "is_active"], unique=False)

    op.create_table(
        "plugin_jobs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("credits_cost", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("params_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("prediction_id", sa.String(length=128), nullable=True),
        sa.Column("output_json", sa.Text(), nullable=True),
        sa.Column("error", sa.String(length=255), nullable=True),
        sa.Column("media_id", sa.String(length=36), nullable=True),
        _created_at(),
        _updated_at(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["media_id"], ["media_items.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prediction_id", name="uq_plugin_jobs_prediction_id"),
    )
    op.create_index("ix_plugin_jobs_user_created_at", "plugin_jobs", ["user_id", "created_at"], unique=False)

    op.create_table(
        "stations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("username", sa.String(length=30), nullable=True),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("is_live", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("listener_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_track_id", sa.String(length=36), nullable=True),
        sa.Column("current_track_title", sa.String(length=100), nullable=True),
        sa.Column("current_track_image", sa.String(length=1000), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_live_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_stations_user_id"),
    )
    op.create_index("ix_stations_is_live_updated_at", "stations", ["is_live", "updated_at"], unique=False)

    op.create_table(
        "payment_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("event_id", sa.String(length=160), nullable=False),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="received"),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("error_message", sa.String(length=255), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider", "event_id", name="uq_payment_events_provider_event"),
    )
    op.create_index("ix_payment_events_created_at", "payment_events", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_payment_events_created_at", table_name="payment_events")
    op.drop_table("payment_events")

    op.drop_index("ix_stations_is_live_updated_at", table_name="stations")
    op.drop_table("stations")

    op.drop_index("ix_plugin_jobs_user_created_at", table_name="plugin_jobs")
    op.drop_table("plugin_jobs")

    op.drop_index("ix_plugin_tokens_user_active", table_name="plugin_tokens")
    op.drop_table("plugin_tokens")

    op.drop_index("ix_credit_transactions_user_type", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_user_created_at", table_name="credit_transactions")
    op.drop_table("credit_transactions")

    op.drop_index("ix_chat_messages_user_timestamp", table_name="chat_messages")
    op.drop_table("chat_messages")

    op.drop_index("ix_user_follows_following_id", table_name="user_follows")
    op.drop_table("user_follows")

    op.drop_index("ix_media_likes_media_id", table_name="media_likes")
    op.drop_table("media_likes")

    op.drop_index("ix_media_items_public_status_created_at", table_name="media_items")
    op.drop_index("ix_media_items_user_created_at", table_name="media_items")
    op.drop_table("media_items")

    op.drop_index("ix_users_stripe_customer_id", table_name="users")
    op.drop_index("ix_users_subscription_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
