"""
ScopeGate Database Models
Inventory dashboard schema read by the resource access engine.

The engine itself addresses tables by name; these declarations exist so the
schema can be created for local runs and tests, and so the
``v_tcm_user_tally_card_entries`` view can be built over the SCD2 base table.
"""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index, false, func, text, true
)
from sqlalchemy.orm import declarative_base


def _uuid_default() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


Base = declarative_base()

# =============================================================================
# Directory tables
# =============================================================================

class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    code = Column(String(50), nullable=False, unique=True)  # "RTZ", "BP-WH1"
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, server_default=true(), nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    full_name = Column(String(200), nullable=False)
    email = Column(String(320))
    role_family = Column(String(100))
    is_active = Column(Boolean, default=True, server_default=true(), nullable=False)


class Role(Base):
    __tablename__ = "roles"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    role_code = Column(String(100), nullable=False, unique=True)
    role_name = Column(String(200), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, server_default=true(), nullable=False)
    can_manage_roles = Column(Boolean, default=False, server_default=false(), nullable=False)
    can_manage_cards = Column(Boolean, default=False, server_default=false(), nullable=False)
    can_manage_entries = Column(Boolean, default=False, server_default=false(), nullable=False)


class RoleWarehouseRule(Base):
    __tablename__ = "role_warehouse_rules"

    id = Column(Integer, primary_key=True)
    role_id = Column(String(36), ForeignKey("roles.id"), nullable=False)
    warehouse_id = Column(String(36), ForeignKey("warehouses.id"), nullable=False)
    role_code = Column(String(100))

    __table_args__ = (
        Index("ix_role_warehouse_rules_role_id", "role_id"),
    )


# =============================================================================
# Tally cards
# =============================================================================

class TallyCard(Base):
    __tablename__ = "tcm_tally_cards"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    card_uid = Column(String(36), unique=True, default=_uuid_default)
    tally_card_number = Column(String(100), nullable=False)
    warehouse_id = Column(String(36), ForeignKey("warehouses.id"))
    warehouse = Column(String(50))  # warehouse code, denormalized
    item_number = Column(Integer)
    note = Column(Text)
    is_active = Column(Boolean, default=True, server_default=true(), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class TallyCardHistory(Base):
    __tablename__ = "tcm_tally_card_history"

    id = Column(Integer, primary_key=True)
    tally_card_id = Column(String(36), ForeignKey("tcm_tally_cards.id"), nullable=False)
    action = Column(String(50), nullable=False)
    from_item_number = Column(Integer)
    to_item_number = Column(Integer)
    from_warehouse = Column(String(50))
    to_warehouse = Column(String(50))
    note = Column(Text)
    changed_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    __table_args__ = (
        Index("ix_tcm_tally_card_history_card", "tally_card_id"),
    )


class UserTallyCardEntry(Base):
    """SCD2 base table: every edit inserts a new row sharing ``card_uid``."""

    __tablename__ = "tcm_user_tally_card_entries"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    card_uid = Column(String(36))  # anchor
    tally_card_number = Column(String(100))
    updated_by_user_id = Column(String(36), ForeignKey("users.id"))
    user_id = Column(String(36))  # legacy updater column
    role_family = Column(String(100))
    warehouse_id = Column(String(36), ForeignKey("warehouses.id"))
    qty = Column(Integer)
    location = Column(String(200))
    note = Column(Text)
    reason_code = Column(String(100), default="UNSPECIFIED", server_default="UNSPECIFIED")
    multi_location = Column(Boolean, default=False, server_default=false(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    __table_args__ = (
        Index("ix_tcm_user_entries_anchor_updated", "card_uid", "updated_at"),
    )


# =============================================================================
# Locations and widgets
# =============================================================================

class WarehouseLocation(Base):
    __tablename__ = "warehouse_locations"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    warehouse_id = Column(String(36), ForeignKey("warehouses.id"), nullable=False)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, server_default=true(), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class Widget(Base):
    __tablename__ = "widgets"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    name = Column(String(200), nullable=False)
    warehouse_id = Column(String(36))
    owner_id = Column(String(36))
    is_active = Column(Boolean, default=True, server_default=true(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


# =============================================================================
# Views
# =============================================================================

# Latest version per anchor, with updater name and warehouse code joined in.
V_USER_TALLY_CARD_ENTRIES_SQL = """
CREATE VIEW v_tcm_user_tally_card_entries AS
SELECT
    e.id,
    e.updated_by_user_id AS user_id,
    u.full_name,
    e.role_family,
    e.tally_card_number,
    e.card_uid,
    e.qty,
    e.location,
    e.note,
    e.reason_code,
    e.multi_location,
    e.updated_at,
    e.warehouse_id,
    w.code AS warehouse
FROM tcm_user_tally_card_entries e
LEFT JOIN users u ON u.id = e.updated_by_user_id
LEFT JOIN warehouses w ON w.id = e.warehouse_id
WHERE NOT EXISTS (
    SELECT 1 FROM tcm_user_tally_card_entries n
    WHERE n.card_uid = e.card_uid
      AND (n.updated_at > e.updated_at OR (n.updated_at = e.updated_at AND n.id > e.id))
)
"""

VIEW_DDL = {
    "v_tcm_user_tally_card_entries": V_USER_TALLY_CARD_ENTRIES_SQL,
}


def create_schema(engine) -> None:
    """Create all tables and views (local runs and tests; production uses managed DDL)."""
    Base.metadata.create_all(engine)
    with engine.begin() as conn:
        for name, ddl in VIEW_DDL.items():
            conn.execute(text(f"DROP VIEW IF EXISTS {name}"))
            conn.execute(text(ddl))


__all__ = [
    "Base",
    "Warehouse",
    "User",
    "Role",
    "RoleWarehouseRule",
    "TallyCard",
    "TallyCardHistory",
    "UserTallyCardEntry",
    "WarehouseLocation",
    "Widget",
    "VIEW_DDL",
    "create_schema",
]
