"""create stock ledger tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _create_missing_indexes(table_name: str, indexes: list[tuple[str, list[str]]]) -> None:
    inspector = sa.inspect(op.get_bind())
    if not _table_exists(inspector, table_name):
        return
    for index_name, columns in indexes:
        if not _index_exists(inspector, table_name, index_name):
            op.create_index(index_name, table_name, columns, unique=False)


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("store_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("sku", sa.String(length=255), nullable=False),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("cost_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("track_stock", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("min_stock_level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_stock_level", sa.Integer(), nullable=True),
            sa.Column("reorder_point", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            _timestamp_column("created_at"),
            _timestamp_column("updated_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        )
    _create_missing_indexes(
        "products",
        [
            ("ix_products_store_id", ["store_id"]),
            ("ix_products_store_status", ["store_id", "status"]),
        ],
    )

    inspector = sa.inspect(bind)
    if not _table_exists(inspector, "stock_levels"):
        op.create_table(
            "stock_levels",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("store_id", sa.String(length=36), nullable=False),
            sa.Column("location_id", sa.String(length=36), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("unit_cost", sa.Numeric(12, 2), nullable=False, server_default="0"),
            _timestamp_column("updated_at"),
            sa.CheckConstraint("quantity >= 0", name="ck_stock_levels_quantity_non_negative"),
            sa.CheckConstraint("reserved_quantity >= 0", name="ck_stock_levels_reserved_non_negative"),
            sa.CheckConstraint("reserved_quantity <= quantity", name="ck_stock_levels_reserved_within_quantity"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_missing_indexes(
        "stock_levels",
        [
            ("ix_stock_levels_product_id", ["product_id"]),
            ("ix_stock_levels_store_id", ["store_id"]),
        ],
    )
    inspector = sa.inspect(bind)
    if _table_exists(inspector, "stock_levels"):
        if not _index_exists(inspector, "stock_levels", "ux_stock_levels_product_store_location"):
            op.create_index(
                "ux_stock_levels_product_store_location",
                "stock_levels",
                ["product_id", "store_id", "location_id"],
                unique=True,
            )
        if not _index_exists(inspector, "stock_levels", "ux_stock_levels_product_store_default_location"):
            op.create_index(
                "ux_stock_levels_product_store_default_location",
                "stock_levels",
                ["product_id", "store_id"],
                unique=True,
                postgresql_where=sa.text("location_id IS NULL"),
                sqlite_where=sa.text("location_id IS NULL"),
            )

    inspector = sa.inspect(bind)
    if not _table_exists(inspector, "stock_movements"):
        op.create_table(
            "stock_movements",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("store_id", sa.String(length=36), nullable=False),
            sa.Column("location_id", sa.String(length=36), nullable=True),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("reason", sa.String(length=255), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("previous_quantity", sa.Integer(), nullable=False),
            sa.Column("new_quantity", sa.Integer(), nullable=False),
            sa.Column("unit_cost", sa.Numeric(12, 2), nullable=True),
            sa.Column("total_cost", sa.Numeric(12, 2), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("performed_by", sa.String(length=36), nullable=False),
            _timestamp_column("created_at"),
            sa.CheckConstraint(
                "type IN ('in', 'out', 'adjustment', 'transfer', 'return', 'damaged', 'expired')",
                name="ck_stock_movements_type",
            ),
            sa.CheckConstraint(
                "new_quantity - previous_quantity = quantity",
                name="ck_stock_movements_delta_matches",
            ),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_missing_indexes(
        "stock_movements",
        [
            ("ix_stock_movements_product_id", ["product_id"]),
            ("ix_stock_movements_store_id", ["store_id"]),
            ("ix_stock_movements_store_created_at", ["store_id", "created_at"]),
            ("ix_stock_movements_store_product_created_at", ["store_id", "product_id", "created_at"]),
            ("ix_stock_movements_store_type_created_at", ["store_id", "type", "created_at"]),
        ],
    )

    inspector = sa.inspect(bind)
    if not _table_exists(inspector, "inventory_alerts"):
        op.create_table(
            "inventory_alerts",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("store_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("product_name", sa.String(length=255), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("severity", sa.String(length=20), nullable=False),
            sa.Column("current_quantity", sa.Integer(), nullable=False),
            sa.Column("threshold", sa.Integer(), nullable=True),
            sa.Column("message", sa.String(length=500), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("acknowledged_by", sa.String(length=36), nullable=True),
            sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            _timestamp_column("created_at"),
            _timestamp_column("updated_at"),
            sa.CheckConstraint(
                "status IN ('active', 'acknowledged', 'resolved')",
                name="ck_inventory_alerts_status",
            ),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_missing_indexes(
        "inventory_alerts",
        [
            ("ix_inventory_alerts_store_id", ["store_id"]),
            ("ix_inventory_alerts_product_id", ["product_id"]),
            ("ix_inventory_alerts_store_status_created_at", ["store_id", "status", "created_at"]),
            ("ix_inventory_alerts_store_product_status", ["store_id", "product_id", "status"]),
        ],
    )
    inspector = sa.inspect(bind)
    if _table_exists(inspector, "inventory_alerts") and not _index_exists(
        inspector, "inventory_alerts", "ux_inventory_alerts_store_product_open"
    ):
        op.create_index(
            "ux_inventory_alerts_store_product_open",
            "inventory_alerts",
            ["store_id", "product_id"],
            unique=True,
            postgresql_where=sa.text("status IN ('active', 'acknowledged')"),
            sqlite_where=sa.text("status IN ('active', 'acknowledged')"),
        )

    inspector = sa.inspect(bind)
    if not _table_exists(inspector, "stock_events"):
        op.create_table(
            "stock_events",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("store_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("movement_id", sa.String(length=36), nullable=True),
            sa.Column("event_type", sa.String(length=60), nullable=False),
            sa.Column("payload_json", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
            _timestamp_column("next_attempt_at"),
            sa.Column("last_error", sa.String(length=255), nullable=True),
            sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
            _timestamp_column("created_at"),
            _timestamp_column("updated_at"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["movement_id"], ["stock_movements.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_missing_indexes(
        "stock_events",
        [
            ("ix_stock_events_store_id", ["store_id"]),
            ("ix_stock_events_product_id", ["product_id"]),
            ("ix_stock_events_store_status_next_attempt", ["store_id", "status", "next_attempt_at"]),
            ("ix_stock_events_product_status", ["product_id", "status"]),
        ],
    )


def downgrade() -> None:
    bind = op.get_bind()
    for table_name in ("stock_events", "inventory_alerts", "stock_movements", "stock_levels", "products"):
        inspector = sa.inspect(bind)
        if not _table_exists(inspector, table_name):
            continue
        for index in inspector.get_indexes(table_name):
            if index.get("duplicates_constraint"):
                continue
            op.drop_index(index["name"], table_name=table_name)
        op.drop_table(table_name)
