from datetime import datetime
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fintrack.core.database import Base
from fintrack.models.recurring import RecurringTransaction
from fintrack.services.locks import LocalLockProvider
from fintrack.services.recurring_processor import (
    AutoProcessingSettings,
    RecurringDefinition,
    RecurringProcessor,
)
from recurring_fakes import (
    Harness,
    MemoryDefinitionStore,
    MemorySettingsProvider,
    MemoryTransactionStore,
    RecordingNotifier,
    snapshot_atomic,
    utc,
)


@pytest.fixture
def now() -> datetime:
    # Friday
    return utc(2024, 1, 5, 12, 0)


@pytest.fixture
def make_harness(now):
    def _build(
        definitions: list[RecurringDefinition] | None = None,
        policy: AutoProcessingSettings | None = None,
        transactions: MemoryTransactionStore | None = None,
        **processor_kwargs: Any,
    ) -> Harness:
        tx_store = transactions or MemoryTransactionStore()
        def_store = MemoryDefinitionStore(definitions)
        settings_provider = MemorySettingsProvider(policy)
        notifier = RecordingNotifier()
        processor_kwargs.setdefault("locks", LocalLockProvider(wait_seconds=0.05))
        processor = RecurringProcessor(
            transactions=tx_store,
            definitions=def_store,
            settings_provider=settings_provider,
            notifier=notifier,
            atomic=snapshot_atomic(tx_store, def_store),
            clock=lambda: now,
            **processor_kwargs,
        )
        return Harness(processor, tx_store, def_store, settings_provider, notifier)

    return _build


@pytest.fixture
def db_session():
    """Sync session on in-memory SQLite with working SAVEPOINTs."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite issues its own BEGIN and breaks SAVEPOINT; hand BEGIN to SQLAlchemy
    @event.listens_for(engine, "connect")
    def _no_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def rent_row(db_session) -> RecurringTransaction:
    row = RecurringTransaction(
        type="expense",
        amount=Decimal("1500"),
        description="Rent",
        category="Rent",
        frequency="monthly",
        next_due_date=utc(2024, 1, 1),
        is_active=True,
    )
    db_session.add(row)
    db_session.commit()
    return row
