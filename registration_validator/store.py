from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Engine, delete, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .models import InvalidUser, Registration, ValidationLog, init_db, make_engine, make_session_factory


@dataclass
class DeregistrationRecord:
    identifier: str
    reason: str
    source_module: str
    correlation_id: str
    error_message: Optional[str] = None
    deregistered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationVerdictRecord:
    identifier: str
    source_module: str
    result: dict[str, Any]
    correlation_id: str
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ValidationStore:
    """Explicit handle on the relational store shared with the registration app.

    Built once per process and passed to whatever needs it. Every write runs in
    its own short session so one failed write never poisons the next one.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory: sessionmaker = make_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "ValidationStore":
        return cls(make_engine(database_url))

    def ping(self) -> None:
        with self._session_factory() as session:
            session.execute(text("SELECT 1"))

    def init_schema(self) -> None:
        init_db(self.engine)

    def delete_registration_by_identifier(self, identifier: str) -> bool:
        """Delete the registration row; a missing row is a no-op and returns False."""
        with self._session_factory() as session:
            result = session.execute(delete(Registration).where(Registration.identifier == identifier))
            removed = bool(result.rowcount)
            session.commit()
        if not removed:
            logging.info("registration_absent identifier=%s", identifier)
        return removed

    def insert_deregistration_record(self, record: DeregistrationRecord) -> bool:
        """Insert one deregistration record; returns False when the identifier is already deregistered."""
        with self._session_factory() as session:
            existing = session.scalar(select(InvalidUser.id).where(InvalidUser.identifier == record.identifier))
            if existing is not None:
                logging.info("already_deregistered identifier=%s", record.identifier)
                return False
            session.add(
                InvalidUser(
                    identifier=record.identifier,
                    deregistration_reason=record.reason,
                    source_module=record.source_module,
                    error_message=record.error_message,
                    correlation_id=record.correlation_id,
                    deregistered_at=record.deregistered_at,
                    context=record.context,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                # Lost a race with a concurrent run; the unique constraint already holds the record.
                session.rollback()
                logging.info("already_deregistered identifier=%s source=constraint", record.identifier)
                return False
        return True

    def insert_validation_verdict(self, record: ValidationVerdictRecord) -> ValidationLog:
        with self._session_factory() as session:
            row = ValidationLog(
                identifier=record.identifier,
                source_module=record.source_module,
                validation_result=record.result,
                context=record.context,
                timestamp=record.timestamp,
                correlation_id=record.correlation_id,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def list_validation_logs(self, identifier: str | None = None, limit: int = 50) -> list[ValidationLog]:
        with self._session_factory() as session:
            query = select(ValidationLog).order_by(ValidationLog.timestamp.desc(), ValidationLog.id.desc())
            if identifier:
                query = query.where(ValidationLog.identifier == identifier)
            return list(session.scalars(query.limit(limit)))

    def list_deregistrations(self, limit: int = 50) -> list[InvalidUser]:
        with self._session_factory() as session:
            query = select(InvalidUser).order_by(InvalidUser.deregistered_at.desc()).limit(limit)
            return list(session.scalars(query))
