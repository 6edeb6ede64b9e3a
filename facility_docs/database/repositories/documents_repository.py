from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from facility_docs.database.connection import get_connection
from facility_docs.database.models import is_uuid
from facility_docs.ingestion.exceptions import DocumentNotFoundError
from facility_docs.ingestion.models import Category, DedupScope, DocumentRecord, NewDocument

_COLUMNS = """
    id, title, description, category, file_path, file_name, file_size,
    mime_type, file_hash, facility_id, resident_id, uploaded_by, expiry_date,
    is_confidential, tags, version, is_active, created_at, updated_at
"""

# Editable metadata fields mapped to their columns.
_EDITABLE_COLUMNS = {
    "title": "title",
    "description": "description",
    "category": "category",
    "tags": "tags",
    "expiry_date": "expiry_date",
    "confidential": "is_confidential",
}


class DocumentsRepository:
    """Database operations for the documents table."""

    def insert_unique(
        self, conn: psycopg.Connection[Any], document: NewDocument
    ) -> DocumentRecord | None:
        """Insert a document unless its (scope, digest) is already taken.

        Runs inside the caller's transaction. The partial unique indexes on
        (resident_id, file_hash) and (facility_id, file_hash) decide the
        outcome atomically; a concurrent insert of the same key blocks until
        the other transaction finishes.

        Returns:
            The inserted record, or None if the scope already holds this digest.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                INSERT INTO documents
                (id, title, description, category, file_path, file_name, file_size,
                 mime_type, file_hash, facility_id, resident_id, uploaded_by,
                 expiry_date, is_confidential, tags)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT DO NOTHING
                RETURNING {_COLUMNS}
                """,
                (
                    document.id,
                    document.title,
                    document.description,
                    document.category.value,
                    document.file_path,
                    document.file_name,
                    document.file_size,
                    document.mime_type,
                    document.file_hash,
                    document.facility_id,
                    document.resident_id,
                    document.uploaded_by,
                    document.expiry_date,
                    document.confidential,
                    Jsonb(list(document.tags)),
                ),
            )
            row = cur.fetchone()

        if row is None:
            return None
        return _row_to_record(row)

    def find_id_by_digest(
        self, conn: psycopg.Connection[Any], scope: DedupScope, file_hash: str
    ) -> str | None:
        """Return the id of the document holding ``file_hash`` within ``scope``."""
        with conn.cursor() as cur:
            if scope.by_resident:
                cur.execute(
                    "SELECT id FROM documents WHERE resident_id = %s AND file_hash = %s",
                    (scope.resident_id, file_hash),
                )
            else:
                cur.execute(
                    """
                    SELECT id FROM documents
                    WHERE facility_id = %s AND resident_id IS NULL AND file_hash = %s
                    """,
                    (scope.facility_id, file_hash),
                )
            row = cur.fetchone()

        if row is None:
            return None
        return str(row[0])

    def find_by_id(self, document_id: str) -> DocumentRecord:
        """Find a document by ID.

        Raises:
            DocumentNotFoundError: if no document with this ID exists.
        """
        if not is_uuid(document_id):
            raise DocumentNotFoundError(f"Document {document_id} not found")
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM documents WHERE id = %s",
                    (document_id,),
                )
                row = cur.fetchone()

        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return _row_to_record(row)

    def delete(self, document_id: str) -> DocumentRecord | None:
        """Delete a document row. Returns the deleted record, or None if absent."""
        if not is_uuid(document_id):
            return None
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"DELETE FROM documents WHERE id = %s RETURNING {_COLUMNS}",
                    (document_id,),
                )
                row = cur.fetchone()
            conn.commit()

        if row is None:
            return None
        return _row_to_record(row)

    def update_metadata(self, document_id: str, changes: dict[str, Any]) -> DocumentRecord:
        """Apply metadata edits. Content, digest and storage path are not editable.

        Raises:
            DocumentNotFoundError: if no document with this ID exists.
            ValueError: if ``changes`` names a field that is not editable.
        """
        unknown = set(changes) - set(_EDITABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Fields are not editable: {sorted(unknown)}")
        if not is_uuid(document_id):
            raise DocumentNotFoundError(f"Document {document_id} not found")

        assignments = [
            sql.SQL("{} = %s").format(sql.Identifier(_EDITABLE_COLUMNS[name]))
            for name in changes
        ]
        assignments.append(sql.SQL("updated_at = NOW()"))
        params = [_to_db_value(name, value) for name, value in changes.items()]
        query = sql.SQL("UPDATE documents SET {} WHERE id = %s RETURNING {}").format(
            sql.SQL(", ").join(assignments),
            sql.SQL(_COLUMNS),
        )

        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (*params, document_id))
                row = cur.fetchone()
            conn.commit()

        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return _row_to_record(row)


def _to_db_value(name: str, value: Any) -> Any:
    if name == "tags":
        return Jsonb(list(value))
    if name == "category" and isinstance(value, Category):
        return value.value
    return value


def _row_to_record(row: dict[str, Any]) -> DocumentRecord:
    resident_id = row["resident_id"]
    return DocumentRecord(
        id=str(row["id"]),
        title=row["title"],
        description=row["description"],
        category=Category(row["category"]),
        file_path=row["file_path"],
        file_name=row["file_name"],
        file_size=row["file_size"],
        mime_type=row["mime_type"],
        file_hash=row["file_hash"],
        facility_id=str(row["facility_id"]),
        resident_id=str(resident_id) if resident_id is not None else None,
        uploaded_by=str(row["uploaded_by"]),
        expiry_date=row["expiry_date"],
        confidential=row["is_confidential"],
        tags=tuple(row["tags"] or ()),
        version=row["version"],
        active=row["is_active"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
