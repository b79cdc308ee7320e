"""initial schema: users, catalog, coupons, orders, well-wisher tasks, webhooks

Revision ID: 3f1a2b4c5d6e
Revises:
Create Date: 2026-10-17 09:12:41.204518

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a2b4c5d6e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create every table; skips tables that already exist."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("name", sa.String(100), nullable=True),
            sa.Column("company_name", sa.String(200), nullable=True),
            sa.Column("phone", sa.String(32), nullable=True),
            sa.Column("address", sa.Text(), nullable=True),
            sa.Column("gst_number", sa.String(32), nullable=True),
            sa.Column("date_of_birth", sa.Date(), nullable=True),
            sa.Column("date_of_birth_last_updated", sa.DateTime(), nullable=True),
            sa.Column("user_type", sa.String(16), nullable=False, server_default="individual"),
            sa.Column("role", sa.String(16), nullable=False, server_default="user"),
            sa.Column("public_id", sa.String(16), nullable=True, unique=True),
            sa.Column("qr_code", sa.Text(), nullable=True),
            sa.Column("image_url", sa.String(1024), nullable=True),
            sa.Column("image_key", sa.String(512), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_users_role", "users", ["role"])
        op.create_index("idx_users_user_type", "users", ["user_type"])

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
        )
        op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    if "trees" not in existing_tables:
        op.create_table(
            "trees",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(100), nullable=False),
            sa.Column("price", sa.Float(), nullable=False),
            sa.Column("info", sa.String(500), nullable=False),
            sa.Column("oxygen_kgs", sa.Float(), nullable=False, server_default="0"),
            sa.Column("tree_type", sa.String(16), nullable=False, server_default="individual"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("image_url", sa.String(1024), nullable=False),
            sa.Column("image_key", sa.String(512), nullable=True),
            sa.Column("small_image_urls", sa.JSON(), nullable=True),
            sa.Column("small_image_keys", sa.JSON(), nullable=True),
            sa.Column("package_quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("package_price", sa.Float(), nullable=True),
            sa.Column("scientific_species", sa.String(200), nullable=True),
            sa.Column("species_info_available", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("co2", sa.Float(), nullable=True),
            sa.Column("food_security", sa.Integer(), nullable=True),
            sa.Column("economic_development", sa.Integer(), nullable=True),
            sa.Column("co2_absorption", sa.Integer(), nullable=True),
            sa.Column("environmental_protection", sa.Integer(), nullable=True),
            sa.Column("local_uses", sa.JSON(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_trees_type_active", "trees", ["tree_type", "is_active"])
        op.create_index("idx_trees_created_at", "trees", ["created_at"])

    if "coupons" not in existing_tables:
        op.create_table(
            "coupons",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(32), nullable=False, unique=True),
            sa.Column("category", sa.String(16), nullable=False),
            sa.Column("discount_percentage", sa.Float(), nullable=False),
            sa.Column("usage_limit_type", sa.String(16), nullable=False, server_default="unlimited"),
            sa.Column("total_usage_limit", sa.Integer(), nullable=True),
            sa.Column("per_user_usage_limit", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_coupons_category_active", "coupons", ["category", "is_active"])

    if "orders" not in existing_tables:
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.String(16), nullable=False, unique=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("user_email", sa.String(320), nullable=False),
            sa.Column("user_name", sa.String(200), nullable=False),
            sa.Column("user_type", sa.String(16), nullable=False, server_default="individual"),
            sa.Column("total_amount", sa.Float(), nullable=False),
            sa.Column("coupon_code", sa.String(32), nullable=True),
            sa.Column("discount_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("final_amount", sa.Float(), nullable=False),
            sa.Column("coupon_consumed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("payment_method", sa.String(32), nullable=True),
            sa.Column("payment_id", sa.String(64), nullable=True),
            sa.Column("razorpay_order_id", sa.String(64), nullable=True, unique=True),
            sa.Column("is_gift", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("gift_recipient_name", sa.String(200), nullable=True),
            sa.Column("gift_recipient_email", sa.String(320), nullable=True),
            sa.Column("gift_message", sa.String(500), nullable=True),
            sa.Column(
                "assigned_wellwisher_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("admin_notes", sa.String(1000), nullable=True),
            sa.Column("certificate_pdf", sa.LargeBinary(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_orders_user_created", "orders", ["user_id", "created_at"])
        op.create_index("idx_orders_status", "orders", ["status"])
        op.create_index("idx_orders_payment_status", "orders", ["payment_status"])
        op.create_index("idx_orders_wellwisher", "orders", ["assigned_wellwisher_id"])
        op.create_index("idx_orders_payment_id", "orders", ["payment_id"])

    if "order_items" not in existing_tables:
        op.create_table(
            "order_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("tree_id", sa.Integer(), sa.ForeignKey("trees.id", ondelete="SET NULL"), nullable=True),
            sa.Column("tree_name", sa.String(100), nullable=False),
            sa.Column("tree_image_url", sa.String(1024), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("price", sa.Float(), nullable=False),
            sa.Column("oxygen_kgs", sa.Float(), nullable=False, server_default="0"),
            sa.Column("adoption_type", sa.String(8), nullable=False, server_default="self"),
            sa.Column("recipient_name", sa.String(200), nullable=True),
            sa.Column("recipient_email", sa.String(320), nullable=True),
            sa.Column("gift_message", sa.Text(), nullable=True),
        )
        op.create_index("idx_order_items_order", "order_items", ["order_id"])

    if "wellwisher_tasks" not in existing_tables:
        op.create_table(
            "wellwisher_tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("task_id", sa.String(32), nullable=False, unique=True),
            sa.Column("task", sa.String(200), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("scheduled_date", sa.DateTime(), nullable=False),
            sa.Column("priority", sa.String(8), nullable=False, server_default="medium"),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("location", sa.String(255), nullable=False, server_default="To be determined"),
            sa.Column("planted_at", sa.DateTime(), nullable=True),
            sa.Column("latitude", sa.Float(), nullable=True),
            sa.Column("longitude", sa.Float(), nullable=True),
            sa.Column("location_accuracy", sa.Float(), nullable=True),
            sa.Column("location_altitude", sa.Float(), nullable=True),
            sa.Column("location_altitude_accuracy", sa.Float(), nullable=True),
            sa.Column("location_heading", sa.Float(), nullable=True),
            sa.Column("location_speed", sa.Float(), nullable=True),
            sa.Column("location_source", sa.String(32), nullable=True),
            sa.Column("location_permission_state", sa.String(32), nullable=True),
            sa.Column("location_client_timestamp", sa.DateTime(), nullable=True),
            sa.Column("planting_notes", sa.String(500), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("next_growth_update_due", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_ww_tasks_order", "wellwisher_tasks", ["order_id"])
        op.create_index("idx_ww_tasks_status_due", "wellwisher_tasks", ["status", "next_growth_update_due"])
        op.create_index("idx_ww_tasks_status_completed", "wellwisher_tasks", ["status", "completed_at"])

    if "growth_updates" not in existing_tables:
        op.create_table(
            "growth_updates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "task_id", sa.Integer(), sa.ForeignKey("wellwisher_tasks.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("update_id", sa.String(64), nullable=False, unique=True),
            sa.Column("uploaded_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("notes", sa.String(500), nullable=True),
            sa.Column("days_since_planting", sa.Integer(), nullable=False, server_default="0"),
        )
        op.create_index("idx_growth_updates_task", "growth_updates", ["task_id"])

    if "task_images" not in existing_tables:
        op.create_table(
            "task_images",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "task_id", sa.Integer(), sa.ForeignKey("wellwisher_tasks.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column(
                "growth_update_id",
                sa.Integer(),
                sa.ForeignKey("growth_updates.id", ondelete="CASCADE"),
                nullable=True,
            ),
            sa.Column("url", sa.String(1024), nullable=False),
            sa.Column("storage_key", sa.String(512), nullable=False),
            sa.Column("caption", sa.String(255), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_task_images_task", "task_images", ["task_id"])

    if "processed_webhooks" not in existing_tables:
        op.create_table(
            "processed_webhooks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("webhook_id", sa.String(128), nullable=False, unique=True),
            sa.Column("event", sa.String(64), nullable=False),
            sa.Column("processed_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )


def downgrade() -> None:
    for table in (
        "processed_webhooks",
        "task_images",
        "growth_updates",
        "wellwisher_tasks",
        "order_items",
        "orders",
        "coupons",
        "trees",
        "audit_events",
        "users",
    ):
        op.drop_table(table)
