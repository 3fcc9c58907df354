"""Report persistence keyed by (report_date, source)."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from loguru import logger
from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chainpulse.models import ReportRecord

from .upsert import PersistenceError, upsert_statement

REPORT_KEY = ("report_date", "source")


class ReportRepository:
    """Read and write generated reports."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def upsert_report(
        self,
        *,
        report_date: date,
        source: str,
        content: dict[str, Any],
        generated_at: datetime,
        model_used: str | None,
        tokens_used: int | None,
    ) -> ReportRecord:
        """Insert the report for ``(report_date, source)``, replacing any earlier one."""

        row = {
            "report_date": report_date,
            "source": source,
            "report_content": content,
            "generated_at": generated_at,
            "model_used": model_used,
            "tokens_used": tokens_used,
        }
        try:
            self._session.execute(upsert_statement(self._session, ReportRecord, [row], REPORT_KEY))
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise PersistenceError(ReportRecord.__tablename__, 0, str(exc)) from exc
        logger.info("Saved report for {} source={}", report_date.isoformat(), source)
        record = self.get(report_date, source)
        if record is None:
            raise PersistenceError(ReportRecord.__tablename__, 0, "report missing after upsert")
        return record

    # ------------------------------------------------------------------
    # Queries

    def get(self, report_date: date, source: str) -> ReportRecord | None:
        stmt = select(ReportRecord).where(
            ReportRecord.report_date == report_date,
            ReportRecord.source == source,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def latest(self, source: str) -> ReportRecord | None:
        stmt = (
            select(ReportRecord)
            .where(ReportRecord.source == source)
            .order_by(desc(ReportRecord.generated_at), desc(ReportRecord.report_date))
            .limit(1)
        )
        return self._session.execute(stmt).scalar_one_or_none()


__all__ = ["ReportRepository"]
