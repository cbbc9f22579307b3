import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("SCOPEGATE_AUTH_SCOPING", "true")

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session

from scopegate.context import CallerIdentityContext, RequestContext
from scopegate.db import SqlAlchemyExecutor
from scopegate.models import (
    Role,
    RoleWarehouseRule,
    TallyCard,
    TallyCardHistory,
    User,
    UserTallyCardEntry,
    Warehouse,
    WarehouseLocation,
    Widget,
    create_schema,
)
from scopegate.resources.catalog import build_default_registry
from scopegate.services.scope import ScopePolicy


def ts(day: int, hour: int = 10, minute: int = 0) -> datetime:
    return datetime(2024, 1, day, hour, minute, tzinfo=timezone.utc)


class QueryCounter:
    """Counts statements sent to the database cursor."""

    def __init__(self):
        self.statements = []

    def __call__(self, conn, cursor, statement, parameters, context, executemany):
        self.statements.append(statement)

    @property
    def count(self) -> int:
        return len(self.statements)

    def reset(self) -> None:
        self.statements.clear()


def _seed(engine) -> None:
    with Session(engine) as session:
        session.add_all([
            Warehouse(id="w1", code="RTZ", name="Rotterdam"),
            Warehouse(id="w2", code="BP-WH1", name="Budapest 1"),
            User(id="u1", full_name="Ada Admin", email="ada@example.com", role_family="admins"),
            User(id="u2", full_name="Bo Picker", email="bo@example.com", role_family="pickers"),
            User(id="u3", full_name="Cy Former", email="cy@example.com", role_family="pickers", is_active=False),
        ])
        session.flush()
        session.add_all([
            Widget(id="wd1", name="Alpha", warehouse_id="w1", owner_id="u1"),
            Widget(id="wd2", name="Beta", warehouse_id="w1", owner_id="u2"),
            Widget(id="wd3", name="Gamma", warehouse_id="w2", owner_id="u2"),
            Role(id="r1", role_code="ADMIN", role_name="Administrator"),
            Role(id="r2", role_code="PICKER", role_name="Picker", can_manage_entries=True),
            Role(id="r3", role_code="AUDITOR", role_name="Auditor"),
            TallyCard(
                id="tc1", card_uid="A1", tally_card_number="TC-001", warehouse_id="w1",
                warehouse="RTZ", item_number=100, created_at=ts(1),
            ),
            TallyCard(
                id="tc2", card_uid="A2", tally_card_number="TC-002", warehouse_id="w2",
                warehouse="BP-WH1", item_number=200, created_at=ts(1),
            ),
            WarehouseLocation(id="loc1", warehouse_id="w1", name="Aisle 1"),
            WarehouseLocation(id="loc2", warehouse_id="w2", name="Dock"),
        ])
        session.flush()
        session.add_all([
            RoleWarehouseRule(role_id="r2", warehouse_id="w1", role_code="PICKER"),
            RoleWarehouseRule(role_id="r2", warehouse_id="w2", role_code="PICKER"),
            RoleWarehouseRule(role_id="r3", warehouse_id="w2", role_code="AUDITOR"),
            TallyCardHistory(tally_card_id="tc1", action="created", to_item_number=100, changed_at=ts(1)),
            TallyCardHistory(
                tally_card_id="tc1", action="moved", from_warehouse="BP-WH1",
                to_warehouse="RTZ", changed_at=ts(3),
            ),
        ])
        # Five versions of card A1 and three of card A2.
        for index in range(1, 6):
            legacy = index == 2
            session.add(UserTallyCardEntry(
                id=f"e-a1-{index}",
                card_uid="A1",
                tally_card_number="TC-001",
                updated_by_user_id=None if legacy else ("u1" if index % 2 else "u2"),
                user_id="u2" if legacy else None,
                role_family="pickers",
                warehouse_id="w1",
                qty=index * 10,
                location="Aisle 1",
                updated_at=ts(index + 1),
            ))
        for index in range(1, 4):
            session.add(UserTallyCardEntry(
                id=f"e-a2-{index}",
                card_uid="A2",
                tally_card_number="TC-002",
                updated_by_user_id="u2",
                role_family="pickers",
                warehouse_id="w2",
                qty=index,
                location="Dock",
                updated_at=ts(index + 10),
            ))
        session.commit()


@pytest.fixture
def engine(tmp_path):
    db_path = tmp_path / "scopegate_test.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    create_schema(engine)
    _seed(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def executor(engine):
    return SqlAlchemyExecutor(engine)


@pytest.fixture
def query_counter(engine):
    counter = QueryCounter()
    event.listen(engine, "before_cursor_execute", counter)
    yield counter
    event.remove(engine, "before_cursor_execute", counter)


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def policy():
    return ScopePolicy.enforcing()


@pytest.fixture
def make_identity():
    def factory(**overrides) -> CallerIdentityContext:
        values = {
            "effective_user_id": "u2",
            "role_family": "pickers",
            "allowed_warehouse_ids": ["w1"],
            "allowed_warehouse_codes": ["RTZ"],
        }
        values.update(overrides)
        return CallerIdentityContext.from_values(**values)

    return factory


@pytest.fixture
def make_context(make_identity):
    def factory(identity=None, **overrides) -> RequestContext:
        return RequestContext(identity=identity or make_identity(**overrides))

    return factory
