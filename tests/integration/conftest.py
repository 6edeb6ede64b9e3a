import os
import uuid
from collections.abc import Generator
from dataclasses import dataclass
from importlib.resources import files
from typing import Any

import psycopg
import pytest

from facility_docs.config.settings import Settings
from facility_docs.database.connection import close_pool, get_connection, init_pool


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "facility_docs_test")
    return Settings()


@dataclass(frozen=True)
class SeededTenancy:
    facility_id: str
    other_facility_id: str
    resident_id: str


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        with get_connection() as conn:
            conn.execute(files("facility_docs.database").joinpath("schema.sql").read_text())
            conn.commit()
    except Exception as e:
        close_pool()
        pytest.skip(
            f"PostgreSQL test DB not available: {e}. "
            "Set DB_* env to point at a disposable database"
        )
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn


@pytest.fixture
def seed_tenancy(db_conn: psycopg.Connection[Any]) -> Generator[SeededTenancy, None, None]:
    seeded = SeededTenancy(
        facility_id=str(uuid.uuid4()),
        other_facility_id=str(uuid.uuid4()),
        resident_id=str(uuid.uuid4()),
    )
    with db_conn.cursor() as cur:
        cur.execute(
            "INSERT INTO facilities (id, name) VALUES (%s, %s), (%s, %s)",
            (seeded.facility_id, "Maple House", seeded.other_facility_id, "Oak Lodge"),
        )
        cur.execute(
            "INSERT INTO residents (id, facility_id) VALUES (%s, %s)",
            (seeded.resident_id, seeded.facility_id),
        )
    db_conn.commit()
    try:
        yield seeded
    finally:
        facility_ids = [seeded.facility_id, seeded.other_facility_id]
        with db_conn.cursor() as cur:
            cur.execute(
                "DELETE FROM documents WHERE facility_id = ANY(%s::uuid[])", (facility_ids,)
            )
            cur.execute(
                "DELETE FROM residents WHERE facility_id = ANY(%s::uuid[])", (facility_ids,)
            )
            cur.execute("DELETE FROM facilities WHERE id = ANY(%s::uuid[])", (facility_ids,))
        db_conn.commit()
