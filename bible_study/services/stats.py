# services/stats.py
from bible_study.schemas import ParsedStudy, StudyStats


def study_stats(study: ParsedStudy) -> StudyStats:
    total_weeks = len(study.weeks or [])
    total_days = 0
    total_questions = 0
    for week in study.weeks or []:
        total_days += len(week.days or [])
        for day in week.days or []:
            total_questions += len(day.questions or [])

    return StudyStats(
        total_weeks=total_weeks,
        total_days=total_days,
        total_questions=total_questions,
        average_questions_per_day=total_questions / total_days if total_days else 0.0,
        average_days_per_week=total_days / total_weeks if total_weeks else 0.0,
    )
