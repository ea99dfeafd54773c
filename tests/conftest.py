"""
Shared fixtures.

Every test gets its own SQLite file (aiosqlite, foreign keys on) in tmp_path.
Async scenarios run through `with_db(scenario)`, which opens a Database,
creates the schema, awaits `scenario(db)` and closes everything again.
"""
import asyncio

import pytest

from bible_study.database import Database


@pytest.fixture()
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture()
def with_db(db_url):
    def run(scenario):
        async def _main():
            db = Database(db_url).open()
            try:
                await db.create_all()
                return await scenario(db)
            finally:
                await db.close()

        return asyncio.run(_main())

    return run
