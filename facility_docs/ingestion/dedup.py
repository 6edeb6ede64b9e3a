from typing import Any

import psycopg

from facility_docs.database.repositories.documents_repository import DocumentsRepository
from facility_docs.ingestion.exceptions import DuplicateContentError, StorageFailureError
from facility_docs.ingestion.models import DocumentRecord, NewDocument
from facility_docs.logging.logger import Log


class DedupIndex:
    """Atomic (scope, digest) reservation backed by the documents unique indexes.

    There is no separate "is it a duplicate?" query before the write: the
    insert itself is the check, so two concurrent uploads of the same content
    into the same scope cannot both succeed.
    """

    def __init__(self, doc_repo: DocumentsRepository) -> None:
        self._doc_repo = doc_repo

    def check_and_reserve(
        self, conn: psycopg.Connection[Any], document: NewDocument
    ) -> DocumentRecord:
        """Reserve ``document``'s digest in its scope within the open transaction.

        Raises:
            DuplicateContentError: the scope already holds identical content.
            StorageFailureError: the conflicting row disappeared before it could
                be read (a concurrent upload rolled back); retrying is safe.
        """
        record = self._doc_repo.insert_unique(conn, document)
        if record is not None:
            return record

        scope = document.scope
        existing_id = self._doc_repo.find_id_by_digest(conn, scope, document.file_hash)
        if existing_id is None:
            Log.warning(
                "Dedup conflict without a visible holder",
                scope=scope.describe(),
                file_hash=document.file_hash,
            )
            raise StorageFailureError()
        Log.info(
            "Duplicate content rejected",
            scope=scope.describe(),
            existing_document_id=existing_id,
        )
        raise DuplicateContentError(existing_id)
