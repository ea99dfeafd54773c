"""Builders and small queries shared by the test modules."""
from sqlalchemy import func, select

from bible_study.database import Database
from bible_study.schemas import ParsedStudy, StudyRead, StudyUpdatePayload


async def count_rows(db: Database, model) -> int:
    async with db.session() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


def romans() -> ParsedStudy:
    return ParsedStudy.model_validate(
        {
            "title": "Romans",
            "weeks": [
                {
                    "weekNumber": 1,
                    "title": "Intro",
                    "days": [
                        {
                            "dayNumber": 1,
                            "title": "Day 1",
                            "questions": [
                                {"questionText": "What stands out?", "questionType": "observation", "order": 1}
                            ],
                        }
                    ],
                }
            ],
        }
    )


def make_study(weeks: int = 3, days: int = 2, questions: int = 3, title: str = "Ephesians") -> ParsedStudy:
    return ParsedStudy.model_validate(
        {
            "title": title,
            "description": "Grace and the church",
            "author": "Study Team",
            "weeks": [
                {
                    "weekNumber": w,
                    "title": f"Lesson {w}",
                    "description": f"Week {w} overview",
                    "days": [
                        {
                            "dayNumber": d,
                            "title": f"Lesson {w} Day {d}",
                            "content": f"Read and reflect ({w}.{d})",
                            "scripture": f"Eph {w}:{d}",
                            "questions": [
                                {
                                    "questionText": f"Q{w}.{d}.{q}",
                                    "questionType": "reflection" if q % 2 else "text",
                                    "order": q,
                                }
                                for q in range(1, questions + 1)
                            ],
                        }
                        for d in range(1, days + 1)
                    ],
                }
                for w in range(1, weeks + 1)
            ],
        }
    )


def tree_payload(study) -> dict:
    """The editor's view of a stored study: what it would PUT back unchanged."""
    dumped = StudyRead.model_validate(study).model_dump(by_alias=True, mode="json")
    return {"metadata": dumped, "weeks": dumped["weeks"]}


def edit_payload(study, mutate=None) -> StudyUpdatePayload:
    payload = tree_payload(study)
    if mutate is not None:
        mutate(payload)
    return StudyUpdatePayload.model_validate(payload)
