# services/studies.py
import logging
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bible_study.database import Database
from bible_study.errors import StudyNotFoundError, StudyPersistenceError
from bible_study.models import Day, Study, Week
from bible_study.schemas import StudySummary
from bible_study.services.audit import record_audit

logger = logging.getLogger(__name__)


def _tree_query():
    # relationships carry order_by week_number / day_number / order
    return select(Study).options(
        selectinload(Study.weeks).selectinload(Week.days).selectinload(Day.questions)
    )


async def get_study_tree(session: AsyncSession, study_id: int) -> Optional[Study]:
    result = await session.execute(
        _tree_query().where(Study.id == study_id).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def require_study_tree(session: AsyncSession, study_id: int) -> Study:
    study = await get_study_tree(session, study_id)
    if study is None:
        raise StudyNotFoundError("Study", study_id)
    return study


async def list_studies(session: AsyncSession) -> list[StudySummary]:
    week_counts = (
        select(Week.study_id, func.count(Week.id).label("week_count"))
        .group_by(Week.study_id)
        .subquery()
    )
    rows = await session.execute(
        select(Study, func.coalesce(week_counts.c.week_count, 0))
        .outerjoin(week_counts, week_counts.c.study_id == Study.id)
        .order_by(Study.created_at.desc(), Study.id.desc())
    )
    return [
        StudySummary(
            id=study.id,
            title=study.title,
            author=study.author,
            is_published=study.is_published,
            is_premium=study.is_premium,
            price=study.price,
            week_count=count,
            created_at=study.created_at,
        )
        for study, count in rows.all()
    ]


async def delete_study(
    db: Database,
    study_id: int,
    *,
    actor_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Delete a study; the store cascades to weeks, days, questions and answers."""
    try:
        async with db.session() as session:
            title = (await session.execute(select(Study.title).where(Study.id == study_id))).scalar_one_or_none()
            if title is None:
                raise StudyNotFoundError("Study", study_id)
            await session.execute(delete(Study).where(Study.id == study_id))
            await session.commit()
    except SQLAlchemyError as exc:
        logger.exception("Deleting study %s failed", study_id)
        raise StudyPersistenceError("Failed to delete study") from exc

    logger.info("Study %s deleted", study_id)
    await record_audit(
        db,
        actor_id,
        "delete",
        "Study",
        study_id,
        {"title": title},
        ip_address=ip_address,
        user_agent=user_agent,
    )


__all__ = ["get_study_tree", "require_study_tree", "list_studies", "delete_study"]
