"""Reconciliation pipeline: sync an edited study tree onto the stored one.

The same three-way diff runs at every level, using only the immediate
children of the resolved parent:

* persisted children whose id is absent from the submission are deleted
  (the store cascades to their descendants);
* ``New`` nodes are inserted under the parent;
* ``Existing`` nodes get every mutable field overwritten.

Deletes at a level run before any insert or update at that level, so a new
node may reuse the number of one that was just removed. A level is fully
applied before the engine descends into each child's own children. A child
list of ``None`` leaves that level as it is.

The whole edit runs inside one transaction; a failure at any level rolls
back every level, including the study metadata.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bible_study.database import Database
from bible_study.errors import StudyError, StudyNotFoundError, StudyTimeoutError, classify_failure
from bible_study.models import Day, Question, Study, Week
from bible_study.schemas import LevelCounts, ReconcileReport
from bible_study.services.audit import record_audit
from bible_study.services.edit_tree import DayNode, Existing, QuestionNode, StudyEdit, WeekNode
from bible_study.services.studies import require_study_tree
from bible_study.settings.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    study: Study
    report: ReconcileReport


def _same(current: Any, new: Any) -> bool:
    if isinstance(current, Decimal) or isinstance(new, Decimal):
        if current is None or new is None:
            return current is new
        return Decimal(str(current)) == Decimal(str(new))
    return current == new


def _overwrite(row: Any, values: dict[str, Any]) -> bool:
    """Assign every field; returns True when at least one value differed."""
    changed = False
    for key, value in values.items():
        if not _same(getattr(row, key), value):
            setattr(row, key, value)
            changed = True
    return changed


def _level_error(exc: SQLAlchemyError, level: str, parent_id: int) -> StudyError:
    error = classify_failure(
        exc,
        conflict_message=f"Conflicting {level} numbers or order under {parent_id}; nothing was saved.",
        failure_message="Failed to update study",
    )
    error.details.update({"level": level, "parentId": parent_id})
    return error


def _week_values(node: WeekNode) -> dict[str, Any]:
    return {"week_number": node.week_number, "title": node.title, "description": node.description}


def _day_values(node: DayNode) -> dict[str, Any]:
    return {
        "day_number": node.day_number,
        "title": node.title,
        "content": node.content,
        "scripture": node.scripture,
    }


def _question_values(node: QuestionNode) -> dict[str, Any]:
    return {"question_text": node.question_text, "question_type": node.question_type, "order": node.order}


async def _sync_level(
    session: AsyncSession,
    *,
    level: str,
    model,
    parent_key: str,
    parent_id: int,
    nodes: Sequence[Any],
    values_of: Callable[[Any], dict[str, Any]],
    counts: LevelCounts,
) -> list[tuple[Any, Any]]:
    parent_col = getattr(model, parent_key)
    try:
        persisted = set(
            (await session.execute(select(model.id).where(parent_col == parent_id))).scalars().all()
        )
        submitted = {node.ref.id for node in nodes if isinstance(node.ref, Existing)}

        stale = persisted - submitted
        if stale:
            await session.execute(delete(model).where(model.id.in_(stale)))
            counts.deleted += len(stale)

        resolved = []
        for node in nodes:
            values = values_of(node)
            if isinstance(node.ref, Existing):
                if node.ref.id not in persisted:
                    raise StudyNotFoundError(model.__name__, node.ref.id)
                row = await session.get(model, node.ref.id)
                if _overwrite(row, values):
                    counts.updated += 1
                else:
                    counts.unchanged += 1
            else:
                row = model(**{parent_key: parent_id}, **values)
                session.add(row)
                counts.created += 1
            await session.flush()
            resolved.append((node, row))
        return resolved
    except SQLAlchemyError as exc:
        logger.exception("Reconciling %s rows under %s failed", level, parent_id)
        raise _level_error(exc, level, parent_id) from exc


async def _sync_questions(session: AsyncSession, day_id: int, nodes, report: ReconcileReport) -> None:
    await _sync_level(
        session, level="question", model=Question, parent_key="day_id", parent_id=day_id,
        nodes=nodes, values_of=_question_values, counts=report.questions,
    )


async def _sync_days(session: AsyncSession, week_id: int, nodes, report: ReconcileReport) -> None:
    resolved = await _sync_level(
        session, level="day", model=Day, parent_key="week_id", parent_id=week_id,
        nodes=nodes, values_of=_day_values, counts=report.days,
    )
    for node, row in resolved:
        if node.questions is not None:
            await _sync_questions(session, row.id, node.questions, report)


async def _sync_weeks(session: AsyncSession, study_id: int, nodes, report: ReconcileReport) -> None:
    resolved = await _sync_level(
        session, level="week", model=Week, parent_key="study_id", parent_id=study_id,
        nodes=nodes, values_of=_week_values, counts=report.weeks,
    )
    for node, row in resolved:
        if node.days is not None:
            await _sync_days(session, row.id, node.days, report)


async def _apply(session: AsyncSession, study_id: int, edit: StudyEdit, report: ReconcileReport) -> None:
    study = await session.get(Study, study_id)
    if study is None:
        raise StudyNotFoundError("Study", study_id)

    report.study_changed = _overwrite(
        study,
        {
            "title": edit.title,
            "description": edit.description,
            "author": edit.author,
            "cover_image": edit.cover_image,
            "price": edit.price,
            "is_published": edit.is_published,
            "is_premium": edit.is_premium,
        },
    )
    await session.flush()

    if edit.weeks is not None:
        await _sync_weeks(session, study_id, edit.weeks, report)


async def reconcile_study(
    db: Database,
    study_id: int,
    edit: StudyEdit,
    *,
    actor_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    tx_timeout: Optional[float] = None,
    acquire_timeout: Optional[float] = None,
) -> ReconcileResult:
    tx_timeout = tx_timeout or settings.INGEST_TX_TIMEOUT_SEC
    acquire_timeout = acquire_timeout or settings.INGEST_TX_ACQUIRE_TIMEOUT_SEC
    report = ReconcileReport()

    try:
        async with db.session() as session:
            async with session.begin():
                await asyncio.wait_for(session.connection(), timeout=acquire_timeout)
                await asyncio.wait_for(_apply(session, study_id, edit, report), timeout=tx_timeout)
            study = await require_study_tree(session, study_id)
    except StudyError:
        raise
    except asyncio.TimeoutError as exc:
        logger.warning("Reconciling study %s timed out", study_id)
        raise StudyTimeoutError() from exc
    except SQLAlchemyError as exc:
        logger.exception("Reconciling study %s failed", study_id)
        raise _level_error(exc, "study", study_id) from exc

    logger.info(
        "Study %s reconciled: +%d ~%d -%d",
        study_id, report.total_created, report.total_updated, report.total_deleted,
    )
    await record_audit(
        db,
        actor_id,
        "update",
        "Study",
        study_id,
        {"title": study.title, "report": report.model_dump(by_alias=True)},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return ReconcileResult(study=study, report=report)


__all__ = ["ReconcileResult", "reconcile_study"]
