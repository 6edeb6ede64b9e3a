from psycopg.rows import dict_row

from facility_docs.database.connection import get_connection
from facility_docs.database.models import FacilityRow, ResidentRow, is_uuid


class TenancyRepository:
    """Read-only lookups against the facilities and residents tables."""

    def find_facility(self, facility_id: str) -> FacilityRow | None:
        if not is_uuid(facility_id):
            return None
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    "SELECT id, name, is_active FROM facilities WHERE id = %s",
                    (facility_id,),
                )
                row = cur.fetchone()

        if row is None:
            return None
        return FacilityRow(id=str(row["id"]), name=row["name"], active=row["is_active"])

    def find_resident(self, resident_id: str) -> ResidentRow | None:
        """Find a resident by id. Soft-deleted residents are treated as missing."""
        if not is_uuid(resident_id):
            return None
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT id, facility_id
                    FROM residents
                    WHERE id = %s AND deleted_at IS NULL
                    """,
                    (resident_id,),
                )
                row = cur.fetchone()

        if row is None:
            return None
        return ResidentRow(id=str(row["id"]), facility_id=str(row["facility_id"]))
