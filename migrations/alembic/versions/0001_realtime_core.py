"""Realtime core schema - profiles, listings, requests, chat, presence, live location, notifications

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Creates the tables behind request conversations: messages with a
per-conversation seq, presence and live location rows keyed by
(user, request), and durable notifications with push registrations and
per-user preferences.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        sa.UUID(),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    # Enable pgcrypto extension for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # profiles table
    # ==========================================================================
    op.create_table(
        "profiles",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    # ==========================================================================
    # listings table
    # ==========================================================================
    op.create_table(
        "listings",
        _uuid_pk(),
        sa.Column("owner_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), server_default="other", nullable=False),
        sa.Column("is_available", sa.Boolean(), server_default="true", nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["owner_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "category IN ('clothing', 'school_supplies', 'electronics', 'other')",
            name="ck_listings_category",
        ),
    )
    op.create_index("ix_listings_owner_id", "listings", ["owner_id"])

    # ==========================================================================
    # requests table (each request is also a conversation)
    # ==========================================================================
    op.create_table(
        "requests",
        _uuid_pk(),
        sa.Column("listing_id", sa.UUID(), nullable=False),
        sa.Column("requester_id", sa.UUID(), nullable=False),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("next_message_seq", sa.Integer(), server_default="1", nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["listing_id"], ["listings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["requester_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'completed')",
            name="ck_requests_status",
        ),
        sa.CheckConstraint(
            "next_message_seq >= 1", name="ck_requests_next_message_seq_positive"
        ),
    )
    op.create_index("ix_requests_listing_id", "requests", ["listing_id"])
    op.create_index("ix_requests_requester_id", "requests", ["requester_id"])

    # ==========================================================================
    # messages table
    # ==========================================================================
    op.create_table(
        "messages",
        _uuid_pk(),
        sa.Column("request_id", sa.UUID(), nullable=False),
        sa.Column("sender_id", sa.UUID(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("message_type", sa.Text(), server_default="text", nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column("location_data", postgresql.JSONB(), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default="false", nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("request_id", "seq", name="uix_messages_request_seq"),
        sa.CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        sa.CheckConstraint(
            "message_type IN ('text', 'image', 'location', 'live_location')",
            name="ck_messages_type",
        ),
        sa.CheckConstraint(
            "(message_type != 'text' OR content IS NOT NULL)",
            name="ck_messages_text_has_content",
        ),
        sa.CheckConstraint(
            "(message_type != 'image' OR media_url IS NOT NULL)",
            name="ck_messages_image_has_media",
        ),
        sa.CheckConstraint(
            "(message_type NOT IN ('location', 'live_location') OR location_data IS NOT NULL)",
            name="ck_messages_location_has_data",
        ),
    )

    # ==========================================================================
    # chat_presence table
    # ==========================================================================
    op.create_table(
        "chat_presence",
        _uuid_pk(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("request_id", sa.UUID(), nullable=False),
        sa.Column("is_online", sa.Boolean(), server_default="false", nullable=False),
        _timestamp("last_seen"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "request_id", name="uix_chat_presence_user_request"),
    )

    # ==========================================================================
    # live_locations table
    # ==========================================================================
    op.create_table(
        "live_locations",
        _uuid_pk(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("request_id", sa.UUID(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("is_sharing", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "request_id", name="uix_live_locations_user_request"),
        sa.CheckConstraint(
            "latitude >= -90 AND latitude <= 90", name="ck_live_locations_latitude"
        ),
        sa.CheckConstraint(
            "longitude >= -180 AND longitude <= 180", name="ck_live_locations_longitude"
        ),
    )

    # ==========================================================================
    # notifications table
    # ==========================================================================
    op.create_table(
        "notifications",
        _uuid_pk(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("related_listing_id", sa.UUID(), nullable=True),
        sa.Column("related_request_id", sa.UUID(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["related_listing_id"], ["listings.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["related_request_id"], ["requests.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "type IN ('request_received', 'request_accepted', 'request_declined', "
            "'new_item', 'new_message')",
            name="ck_notifications_type",
        ),
    )
    op.create_index(
        "ix_notifications_user_created", "notifications", ["user_id", "created_at"]
    )

    # ==========================================================================
    # push_subscriptions table
    # ==========================================================================
    op.create_table(
        "push_subscriptions",
        _uuid_pk(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh", sa.Text(), nullable=False),
        sa.Column("auth", sa.Text(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "user_id", "endpoint", name="uix_push_subscriptions_user_endpoint"
        ),
    )

    # ==========================================================================
    # notification_preferences table
    # ==========================================================================
    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("new_requests", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("request_updates", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("new_items", sa.Boolean(), server_default="true", nullable=False),
        sa.Column(
            "preferred_categories",
            postgresql.JSONB(),
            server_default=sa.text(
                "'[\"clothing\", \"school_supplies\", \"electronics\", \"other\"]'::jsonb"
            ),
            nullable=False,
        ),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("user_id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
    )


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign key dependencies)
    op.drop_table("notification_preferences")
    op.drop_table("push_subscriptions")
    op.drop_index("ix_notifications_user_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("live_locations")
    op.drop_table("chat_presence")
    op.drop_table("messages")
    op.drop_index("ix_requests_requester_id", table_name="requests")
    op.drop_index("ix_requests_listing_id", table_name="requests")
    op.drop_table("requests")
    op.drop_index("ix_listings_owner_id", table_name="listings")
    op.drop_table("listings")
    op.drop_table("profiles")
