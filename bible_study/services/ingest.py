"""Creation pipeline: persist a freshly parsed study.

The study row is committed on its own first. Each week then gets one bounded
transaction holding the week row, a bulk insert of its days and a bulk insert
of every question for those days. Day ids are recovered by re-reading the
week's days keyed by day number, so questions are only ever written once
their parent id is known.

Weeks are processed one after another. If any week fails, the remaining
weeks are skipped and the study row is deleted; the store's ON DELETE
CASCADE removes whatever earlier weeks had already committed.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import delete, insert, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bible_study.database import Database
from bible_study.errors import (
    CompensationOutcome,
    StudyPersistenceError,
    StudyValidationError,
    classify_failure,
)
from bible_study.models import Day, Question, Study, Week
from bible_study.schemas import ParseOutcome, ParsedStudy, ParsedWeek, PublishOptions, StudyStats
from bible_study.services.audit import record_audit
from bible_study.services.stats import study_stats
from bible_study.services.studies import require_study_tree
from bible_study.services.validation import validate_parsed_study
from bible_study.settings.config import settings

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    study: Study
    stats: StudyStats
    warnings: list[str] = field(default_factory=list)


async def _insert_study(db: Database, parsed: ParsedStudy, options: PublishOptions) -> int:
    async with db.session() as session:
        study = Study(
            title=parsed.title.strip(),
            description=parsed.description,
            author=parsed.author,
            is_published=options.is_published,
            is_premium=options.is_premium,
            price=options.price,
        )
        session.add(study)
        await session.commit()
        return study.id


async def _persist_week(session: AsyncSession, study_id: int, week: ParsedWeek) -> int:
    """Write one week, its days and their questions inside the caller's transaction."""
    week_row = Week(
        study_id=study_id,
        week_number=week.week_number,
        title=week.title.strip(),
        description=week.description,
    )
    session.add(week_row)
    await session.flush()

    days = week.days or []
    if not days:
        return week_row.id

    await session.execute(
        insert(Day),
        [
            {
                "week_id": week_row.id,
                "day_number": day.day_number,
                "title": day.title.strip(),
                "content": day.content,
                "scripture": day.scripture,
            }
            for day in days
        ],
    )

    rows = await session.execute(select(Day.day_number, Day.id).where(Day.week_id == week_row.id))
    day_ids = {number: day_id for number, day_id in rows.all()}

    questions = [
        {
            "day_id": day_ids[day.day_number],
            "question_text": q.question_text,
            "question_type": (q.question_type or "text").strip().lower(),
            "order": q.order,
        }
        for day in days
        for q in (day.questions or [])
    ]
    if questions:
        await session.execute(insert(Question), questions)
    return week_row.id


async def _run_week_transaction(
    db: Database,
    study_id: int,
    week: ParsedWeek,
    *,
    tx_timeout: float,
    acquire_timeout: float,
) -> int:
    async with db.session() as session:
        async with session.begin():
            # acquiring the connection is the only place we wait on the pool
            await asyncio.wait_for(session.connection(), timeout=acquire_timeout)
            if db.dialect_name == "postgresql":
                await session.execute(text(f"SET LOCAL statement_timeout = {int(tx_timeout * 1000)}"))
            return await asyncio.wait_for(_persist_week(session, study_id, week), timeout=tx_timeout)


async def _delete_study_rows(db: Database, study_id: int) -> None:
    async with db.session() as session:
        await session.execute(delete(Study).where(Study.id == study_id))
        await session.commit()


async def compensate(db: Database, study_id: int) -> CompensationOutcome:
    """Best effort: a failed cleanup is logged, never raised over the original error."""
    try:
        await _delete_study_rows(db, study_id)
    except Exception:  # noqa: BLE001
        logger.exception("Compensating delete of study %s failed; rows may be left behind", study_id)
        return CompensationOutcome.failed
    logger.warning("Study %s rolled back by compensating delete", study_id)
    return CompensationOutcome.succeeded


async def create_study(
    db: Database,
    parsed: ParsedStudy,
    options: Optional[PublishOptions] = None,
    *,
    actor_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    tx_timeout: Optional[float] = None,
    acquire_timeout: Optional[float] = None,
) -> IngestResult:
    options = options or PublishOptions()
    tx_timeout = tx_timeout or settings.INGEST_TX_TIMEOUT_SEC
    acquire_timeout = acquire_timeout or settings.INGEST_TX_ACQUIRE_TIMEOUT_SEC

    validation = validate_parsed_study(parsed)
    if not validation.valid:
        raise StudyValidationError(validation.errors, validation.warnings)
    stats = study_stats(parsed)
    logger.info(
        "Ingesting study %r: %d weeks, %d days, %d questions",
        parsed.title, stats.total_weeks, stats.total_days, stats.total_questions,
    )

    try:
        study_id = await _insert_study(db, parsed, options)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Creating study row for %r failed", parsed.title)
        raise classify_failure(exc) from exc

    for index, week in enumerate(parsed.weeks, start=1):
        try:
            await _run_week_transaction(
                db, study_id, week, tx_timeout=tx_timeout, acquire_timeout=acquire_timeout
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Week %s (%d of %d) of study %s failed; aborting ingestion",
                week.week_number, index, len(parsed.weeks), study_id,
            )
            error = classify_failure(exc)
            error.compensation = await compensate(db, study_id)
            error.details.setdefault("failedWeek", week.week_number)
            raise error from exc

    try:
        async with db.session() as session:
            study = await require_study_tree(session, study_id)
    except SQLAlchemyError as exc:
        # every week is committed, so the study stays and its id is reported
        logger.exception("Re-reading study %s after ingestion failed", study_id)
        raise StudyPersistenceError(
            "The study was saved but could not be read back", details={"studyId": study_id}
        ) from exc

    logger.info("Study %s ingested (%r)", study_id, study.title)
    await record_audit(
        db,
        actor_id,
        "create",
        "Study",
        study_id,
        {"title": study.title, "stats": stats.model_dump(by_alias=True)},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return IngestResult(study=study, stats=stats, warnings=validation.warnings)


async def create_from_outcome(
    db: Database,
    outcome: ParseOutcome,
    options: Optional[PublishOptions] = None,
    *,
    actor_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> IngestResult:
    """Only a fully resolved parse is ingested; clarification rounds stay with the parser."""
    if outcome.needs_clarification:
        raise StudyValidationError(
            [f"Document needs clarification: {q.question}" for q in outcome.clarifying_questions],
            public_message="The document needs clarification before it can be saved",
        )
    if not outcome.success or outcome.study is None:
        raise StudyValidationError([outcome.error or "The document could not be parsed"])
    return await create_study(
        db, outcome.study, options, actor_id=actor_id, ip_address=ip_address, user_agent=user_agent
    )


__all__ = ["IngestResult", "create_study", "create_from_outcome", "compensate"]
