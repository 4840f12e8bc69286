"""Database models for teams, agents, task logs and settings, stored in SQLite."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

log = logging.getLogger(__name__)


class TeamStatus(str, Enum):
    """Lifecycle state of a team."""

    STOPPED = "stopped"
    RUNNING = "running"
    ERROR = "error"
    DEPLOYING = "deploying"


class AgentRole(str, Enum):
    """Role of an agent within its team."""

    LEADER = "leader"
    WORKER = "worker"


class ContainerStatus(str, Enum):
    """State of an agent's container."""

    STOPPED = "stopped"
    RUNNING = "running"
    ERROR = "error"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JSONText(TypeDecorator):
    """Raw JSON text kept in a TEXT column; empty or missing values read as 'null'.

    Strings and bytes are taken as JSON text already; other values are encoded.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str:
        if value is None:
            return "null"
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode("utf-8")
        if isinstance(value, str):
            return value or "null"
        return json.dumps(value)

    def process_result_value(self, value: Any, dialect: Any) -> str:
        if value is None:
            return "null"
        if isinstance(value, str):
            return value
        if isinstance(value, (bytes, bytearray)):
            return bytes(value).decode("utf-8")
        raise TypeError(f"unsupported type for JSON: {type(value).__name__}")


class Base(DeclarativeBase):
    """Declarative base of all models."""


class Team(Base):
    """An agent team managed by the orchestrator."""

    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(1024), default="")
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=TeamStatus.STOPPED.value,
        server_default=TeamStatus.STOPPED.value,
    )
    runtime: Mapped[str] = mapped_column(
        String(50), nullable=False, default="docker", server_default="docker"
    )
    workspace_path: Mapped[str] = mapped_column(String(512), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)
    agents: Mapped[list[Agent]] = relationship(
        back_populates="team", cascade="all, delete-orphan", passive_deletes=True
    )


class Agent(Base):
    """A single AI agent within a team."""

    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    team_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(50), nullable=False, default=AgentRole.WORKER.value,
        server_default=AgentRole.WORKER.value,
    )
    specialty: Mapped[str] = mapped_column(String(512), default="")
    system_prompt: Mapped[str] = mapped_column(Text, default="")
    claude_md: Mapped[str] = mapped_column(Text, default="")
    skills: Mapped[str] = mapped_column(JSONText, default="null")
    permissions: Mapped[str] = mapped_column(JSONText, default="null")
    resources: Mapped[str] = mapped_column(JSONText, default="null")
    container_id: Mapped[str] = mapped_column(String(128), default="")
    container_status: Mapped[str] = mapped_column(
        String(50), default=ContainerStatus.STOPPED.value,
        server_default=ContainerStatus.STOPPED.value,
    )
    sub_agent_description: Mapped[str] = mapped_column(Text, default="")
    sub_agent_model: Mapped[str] = mapped_column(
        String(50), default="inherit", server_default="inherit"
    )
    sub_agent_skills: Mapped[str] = mapped_column(JSONText, default="null")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)
    team: Mapped[Team] = relationship(back_populates="agents")


class TaskLog(Base):
    """An inter-agent message kept for auditing and replay."""

    __tablename__ = "task_logs"
    __table_args__ = (Index("idx_tasklog_team_created", "team_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    team_id: Mapped[str] = mapped_column(String(36), nullable=False)
    message_id: Mapped[str] = mapped_column(String(36), default="", index=True)
    from_agent: Mapped[str] = mapped_column(String(255), default="")
    to_agent: Mapped[str] = mapped_column(String(255), default="")
    message_type: Mapped[str] = mapped_column(String(50), default="")
    payload: Mapped[str] = mapped_column(JSONText, default="null")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)


class Settings(Base):
    """An application-level key-value setting."""

    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)


def init_db(db_path: str) -> sessionmaker:
    """Open the SQLite database at db_path, create all tables, return a session factory.

    Pass ":memory:" for an in-memory database shared by all sessions.
    """
    if db_path == ":memory:":
        engine = create_engine(
            "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
        )
    else:
        engine = create_engine(f"sqlite:///{db_path}")

    @event.listens_for(engine, "connect")
    def _set_pragmas(dbapi_conn: Any, _record: Any) -> None:
        cursor = dbapi_conn.cursor()
        for pragma in ("PRAGMA journal_mode=WAL", "PRAGMA foreign_keys=ON"):
            try:
                cursor.execute(pragma)
            except Exception as exc:  # noqa: BLE001
                log.warning("failed to run %s: %s", pragma, exc)
        cursor.close()

    Base.metadata.create_all(engine)
    log.info("database initialized at %s", db_path)
    return sessionmaker(bind=engine, expire_on_commit=False)