"""
Tests for services/ingest.py (creation pipeline).

Failure points are simulated by wrapping `_persist_week`, the unit of work
run inside each per-week transaction.
"""
import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from bible_study.errors import (
    CompensationOutcome,
    StudyConflictError,
    StudyPersistenceError,
    StudyTimeoutError,
    StudyValidationError,
)
from bible_study.models import AuditLog, Day, Question, Study, Week
from bible_study.schemas import ParseOutcome, PublishOptions
from bible_study.services import audit, ingest
from bible_study.services.stats import study_stats
from bible_study.services.studies import get_study_tree

from tests.helpers import count_rows, make_study, romans


async def _row_counts(db):
    return tuple([await count_rows(db, model) for model in (Study, Week, Day, Question)])


def _fail_on_week(monkeypatch, fail_at: int, exc=None):
    original = ingest._persist_week
    calls = {"n": 0}

    async def flaky(session, study_id, week):
        calls["n"] += 1
        if calls["n"] == fail_at:
            raise exc or RuntimeError("simulated failure")
        return await original(session, study_id, week)

    monkeypatch.setattr(ingest, "_persist_week", flaky)
    return calls


# ── Happy path ────────────────────────────────────────────────

class TestCreate:
    def test_romans_scenario(self, with_db):
        async def scenario(db):
            result = await ingest.create_study(db, romans(), actor_id="admin-1")
            study = result.study
            assert study.id is not None
            assert len(study.weeks) == 1
            assert len(study.weeks[0].days) == 1
            assert len(study.weeks[0].days[0].questions) == 1
            question = study.weeks[0].days[0].questions[0]
            assert question.question_text == "What stands out?"
            assert question.question_type == "observation"
            stats = result.stats
            assert (stats.total_weeks, stats.total_days, stats.total_questions) == (1, 1, 1)

        with_db(scenario)

    def test_tree_matches_stats_and_parents(self, with_db):
        async def scenario(db):
            parsed = make_study(weeks=3, days=2, questions=3)
            result = await ingest.create_study(db, parsed)
            expected = study_stats(parsed)

            async with db.session() as session:
                study = await get_study_tree(session, result.study.id)

            weeks = study.weeks
            days = [d for w in weeks for d in w.days]
            questions = [q for d in days for q in d.questions]
            assert len(weeks) == expected.total_weeks
            assert len(days) == expected.total_days
            assert len(questions) == expected.total_questions
            for week in weeks:
                assert week.study_id == study.id
                for day in week.days:
                    assert day.week_id == week.id
                    # questions were written to the day they belong to
                    assert all(q.question_text.startswith(f"Q{week.week_number}.{day.day_number}.") for q in day.questions)
                    assert all(q.day_id == day.id for q in day.questions)

        with_db(scenario)

    def test_tree_is_ordered(self, with_db):
        async def scenario(db):
            parsed = make_study(weeks=3, days=3, questions=3)
            parsed.weeks.reverse()
            for week in parsed.weeks:
                week.days.reverse()
                for day in week.days:
                    day.questions.reverse()
            result = await ingest.create_study(db, parsed)
            study = result.study
            assert [w.week_number for w in study.weeks] == [1, 2, 3]
            assert [d.day_number for d in study.weeks[0].days] == [1, 2, 3]
            assert [q.order for q in study.weeks[0].days[0].questions] == [1, 2, 3]

        with_db(scenario)

    def test_publish_options_stored(self, with_db):
        async def scenario(db):
            options = PublishOptions(is_published=True, is_premium=True, price="12.50")
            result = await ingest.create_study(db, romans(), options)
            assert result.study.is_published is True
            assert result.study.is_premium is True
            assert float(result.study.price) == 12.5

        with_db(scenario)

    def test_week_without_days(self, with_db):
        async def scenario(db):
            parsed = make_study(weeks=2, days=1, questions=1)
            parsed.weeks[1].days = []
            result = await ingest.create_study(db, parsed)
            assert len(result.study.weeks) == 2
            assert result.study.weeks[1].days == []
            assert "Week 2 has no days" in result.warnings

        with_db(scenario)

    def test_warnings_are_returned(self, with_db):
        async def scenario(db):
            parsed = make_study(weeks=1, days=2, questions=1)
            parsed.weeks[0].days[1].day_number = 4
            result = await ingest.create_study(db, parsed)
            assert "Week 1 is missing day numbers: 2, 3" in result.warnings

        with_db(scenario)


# ── Validation gate ───────────────────────────────────────────

class TestValidationGate:
    def test_invalid_study_never_reaches_store(self, with_db):
        async def scenario(db):
            parsed = romans()
            parsed.weeks[0].week_number = 0
            with pytest.raises(StudyValidationError) as info:
                await ingest.create_study(db, parsed)
            assert "Week 1 must have a positive week number" in info.value.errors
            assert await _row_counts(db) == (0, 0, 0, 0)
            assert await count_rows(db, AuditLog) == 0

        with_db(scenario)


# ── Failure and compensation ──────────────────────────────────

class TestCompensation:
    @pytest.mark.parametrize("fail_at", [1, 2, 3])
    def test_failure_after_committed_weeks_leaves_nothing(self, with_db, monkeypatch, fail_at):
        calls = _fail_on_week(monkeypatch, fail_at)

        async def scenario(db):
            with pytest.raises(StudyPersistenceError) as info:
                await ingest.create_study(db, make_study(weeks=3))
            assert info.value.compensation is CompensationOutcome.succeeded
            assert info.value.details["failedWeek"] == fail_at
            assert await _row_counts(db) == (0, 0, 0, 0)
            assert await count_rows(db, AuditLog) == 0

        with_db(scenario)
        # remaining weeks are not attempted
        assert calls["n"] == fail_at

    def test_public_message_hides_internal_error(self, with_db, monkeypatch):
        _fail_on_week(monkeypatch, 1, RuntimeError("password=hunter2"))

        async def scenario(db):
            with pytest.raises(StudyPersistenceError) as info:
                await ingest.create_study(db, romans())
            assert "hunter2" not in info.value.public_message
            assert "hunter2" not in str(info.value.to_payload())

        with_db(scenario)

    def test_duplicate_week_number_is_conflict(self, with_db):
        async def scenario(db):
            parsed = make_study(weeks=2, days=1, questions=1)
            parsed.weeks[1].week_number = 1
            with pytest.raises(StudyConflictError) as info:
                await ingest.create_study(db, parsed)
            assert info.value.compensation is CompensationOutcome.succeeded
            assert await _row_counts(db) == (0, 0, 0, 0)

        with_db(scenario)

    def test_duplicate_day_number_is_conflict(self, with_db):
        async def scenario(db):
            parsed = make_study(weeks=2, days=2, questions=1)
            parsed.weeks[1].days[1].day_number = 1
            with pytest.raises(StudyConflictError):
                await ingest.create_study(db, parsed)
            assert await _row_counts(db) == (0, 0, 0, 0)

        with_db(scenario)

    def test_week_timeout_is_distinct_and_compensated(self, with_db, monkeypatch):
        original = ingest._persist_week

        async def slow_second_week(session, study_id, week):
            if week.week_number == 2:
                await asyncio.sleep(5)
            return await original(session, study_id, week)

        monkeypatch.setattr(ingest, "_persist_week", slow_second_week)

        async def scenario(db):
            with pytest.raises(StudyTimeoutError) as info:
                await ingest.create_study(db, make_study(weeks=3), tx_timeout=0.05)
            assert info.value.retryable
            assert info.value.status_code == 504
            assert info.value.compensation is CompensationOutcome.succeeded
            assert await _row_counts(db) == (0, 0, 0, 0)

        with_db(scenario)

    def test_failed_compensation_is_reported_not_raised(self, with_db, monkeypatch):
        _fail_on_week(monkeypatch, 2)

        async def broken_cleanup(db, study_id):
            raise RuntimeError("store went away")

        monkeypatch.setattr(ingest, "_delete_study_rows", broken_cleanup)

        async def scenario(db):
            with pytest.raises(StudyPersistenceError) as info:
                await ingest.create_study(db, make_study(weeks=3, days=1, questions=1))
            # the original failure surfaces, with the cleanup outcome attached
            assert info.value.compensation is CompensationOutcome.failed
            assert info.value.details["failedWeek"] == 2
            assert await count_rows(db, Study) == 1
            assert await count_rows(db, Week) == 1

        with_db(scenario)

    def test_compensate_directly(self, with_db):
        async def scenario(db):
            result = await ingest.create_study(db, make_study(weeks=2))
            outcome = await ingest.compensate(db, result.study.id)
            assert outcome is CompensationOutcome.succeeded
            assert await _row_counts(db) == (0, 0, 0, 0)

        with_db(scenario)


# ── After commit ──────────────────────────────────────────────

class TestReadBack:
    def test_failed_read_back_keeps_study_and_reports_id(self, with_db, monkeypatch):
        async def unreadable(session, study_id):
            raise OperationalError("SELECT studies", {}, Exception("disk I/O error"))

        monkeypatch.setattr(ingest, "require_study_tree", unreadable)

        async def scenario(db):
            with pytest.raises(StudyPersistenceError) as info:
                await ingest.create_study(db, make_study(weeks=2, days=1, questions=1))
            assert info.value.compensation is CompensationOutcome.not_needed
            async with db.session() as session:
                stored = (await session.execute(select(Study.id))).scalars().all()
            assert info.value.details["studyId"] in stored
            assert await _row_counts(db) == (1, 2, 2, 2)

        with_db(scenario)


# ── Audit ─────────────────────────────────────────────────────

class TestAudit:
    def test_create_is_audited(self, with_db):
        async def scenario(db):
            result = await ingest.create_study(db, romans(), actor_id="admin-7")
            async with db.session() as session:
                entry = (await session.execute(select(AuditLog))).scalars().one()
            assert entry.user_id == "admin-7"
            assert entry.action == "create"
            assert entry.entity_type == "Study"
            assert entry.entity_id == str(result.study.id)
            assert entry.details["title"] == "Romans"
            assert entry.details["stats"]["totalQuestions"] == 1

        with_db(scenario)

    def test_audit_failure_does_not_fail_create(self, with_db, monkeypatch):
        def broken_audit_log(**kwargs):
            raise RuntimeError("audit table locked")

        monkeypatch.setattr(audit, "AuditLog", broken_audit_log)

        async def scenario(db):
            result = await ingest.create_study(db, romans(), actor_id="admin-1")
            assert result.study.id is not None
            assert await count_rows(db, Study) == 1
            assert await count_rows(db, AuditLog) == 0

        with_db(scenario)


# ── Parser outcome ────────────────────────────────────────────

class TestFromOutcome:
    def test_resolved_outcome_is_ingested(self, with_db):
        async def scenario(db):
            outcome = ParseOutcome(success=True, study=romans())
            result = await ingest.create_from_outcome(db, outcome)
            assert result.stats.total_questions == 1

        with_db(scenario)

    def test_clarification_is_never_ingested(self, with_db):
        async def scenario(db):
            outcome = ParseOutcome.model_validate(
                {
                    "success": False,
                    "clarifyingQuestions": [{"id": "q1", "question": "Are lessons weeks?"}],
                    "rawText": "Lesson One ...",
                }
            )
            assert outcome.needs_clarification
            with pytest.raises(StudyValidationError) as info:
                await ingest.create_from_outcome(db, outcome)
            assert info.value.errors == ["Document needs clarification: Are lessons weeks?"]
            assert await count_rows(db, Study) == 0

        with_db(scenario)

    def test_failed_parse_is_rejected(self, with_db):
        async def scenario(db):
            with pytest.raises(StudyValidationError) as info:
                await ingest.create_from_outcome(db, ParseOutcome(success=False, error="empty document"))
            assert info.value.errors == ["empty document"]

        with_db(scenario)
