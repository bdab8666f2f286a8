import os
import sqlite3
import uuid

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

load_dotenv(os.path.join(os.getcwd(), ".env"))

# Settings are read at import time; tests never talk to a broker and the app
# engine must not need a Postgres driver.
os.environ["OMNIBRIDGE_DISPATCH_DELIVERIES"] = "0"
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

from app.db import Base  # noqa: E402

# Register UUID adapter for SQLite - store as string
sqlite3.register_adapter(uuid.UUID, lambda u: str(u))


# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes  # noqa: E402

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return str(value)
                return str(uuid.UUID(value)) if value else None
            return None
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return value
                return uuid.UUID(value) if value else None
            return None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


sqltypes.Uuid.bind_processor = _sqlite_uuid_bind_processor
sqltypes.Uuid.result_processor = _sqlite_uuid_result_processor


# Monkey-patch PostgreSQL JSONB type for SQLite compatibility
# SQLite uses JSON instead of JSONB


def _patch_jsonb_for_sqlite():
    """Make JSONB compile as JSON for SQLite dialect."""
    from sqlalchemy.dialects.sqlite.base import SQLiteTypeCompiler

    if not hasattr(SQLiteTypeCompiler, '_original_visit_JSONB'):
        if hasattr(SQLiteTypeCompiler, 'visit_JSONB'):
            SQLiteTypeCompiler._original_visit_JSONB = SQLiteTypeCompiler.visit_JSONB

        def visit_JSONB(self, type_, **kw):
            return self.visit_JSON(type_, **kw)

        SQLiteTypeCompiler.visit_JSONB = visit_JSONB


_patch_jsonb_for_sqlite()

import app.models  # noqa: F401,E402
from app.models.automation_rule import AutomationRule, AutomationRuleStatus, TriggerLogic  # noqa: E402
from app.models.omnibridge.channel import Channel  # noqa: E402
from app.models.omnibridge.enums import ChannelType  # noqa: E402
from app.schemas.omnibridge.inbound import InboundMessage  # noqa: E402
from app.services.omnibridge.circuit_breaker import reset_breakers  # noqa: E402


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # pysqlite emits its own BEGIN too late for SAVEPOINT to work.
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    # Service commits release savepoints; the outer transaction is rolled back.
    session = Session(
        bind=connection,
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def _reset_circuit_breakers():
    reset_breakers()
    yield
    reset_breakers()


@pytest.fixture()
def tenant_id():
    return uuid.uuid4()


@pytest.fixture()
def other_tenant_id():
    return uuid.uuid4()


def _create_channel(db_session, tenant_id, channel_type, name, config):
    channel = Channel(
        tenant_id=tenant_id,
        name=name,
        channel_type=channel_type,
        config=config,
        is_active=True,
        is_monitoring=True,
    )
    db_session.add(channel)
    db_session.commit()
    db_session.refresh(channel)
    return channel


@pytest.fixture()
def email_channel(db_session, tenant_id):
    return _create_channel(
        db_session,
        tenant_id,
        ChannelType.email,
        "Support mailbox",
        {
            "address": "support@example.com",
            "imap": {
                "host": "imap.example.com",
                "port": 993,
                "username": "support@example.com",
                "password": "secret",
                "mailbox": "INBOX",
            },
            "smtp": {
                "host": "smtp.example.com",
                "port": 587,
                "username": "support@example.com",
                "password": "secret",
                "from_email": "support@example.com",
            },
        },
    )


@pytest.fixture()
def telegram_channel(db_session, tenant_id):
    return _create_channel(
        db_session,
        tenant_id,
        ChannelType.telegram,
        "Support bot",
        {"bot_token": "123:ABC", "webhook_secret": "tg-secret"},
    )


@pytest.fixture()
def chat_channel(db_session, tenant_id):
    return _create_channel(db_session, tenant_id, ChannelType.chat, "Website chat", {})


@pytest.fixture()
def make_rule(db_session, tenant_id):
    def _make(
        actions,
        triggers=None,
        conditions=None,
        tenant=None,
        trigger_logic=TriggerLogic.any,
        priority=0,
        stop_after_match=False,
        cooldown_seconds=0,
        name="Test rule",
        status=AutomationRuleStatus.active,
    ):
        rule = AutomationRule(
            tenant_id=tenant or tenant_id,
            name=name,
            triggers=triggers or [],
            trigger_logic=trigger_logic,
            conditions=conditions or [],
            actions=actions,
            status=status,
            priority=priority,
            stop_after_match=stop_after_match,
            cooldown_seconds=cooldown_seconds,
            is_active=True,
        )
        db_session.add(rule)
        db_session.commit()
        db_session.refresh(rule)
        return rule

    return _make


@pytest.fixture()
def make_inbound():
    def _make(channel, **overrides):
        data = {
            "tenant_id": channel.tenant_id,
            "channel_id": channel.id,
            "channel_type": channel.channel_type,
            "external_id": uuid.uuid4().hex,
            "from_address": "customer@example.org",
            "from_name": "Customer",
            "subject": "Question about my order",
            "body_text": "Hello, where is my order?",
        }
        data.update(overrides)
        return InboundMessage(**data)

    return _make
