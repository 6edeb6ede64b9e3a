from datetime import date
from unittest.mock import MagicMock

import pytest

from facility_docs.database.repositories.documents_repository import DocumentsRepository
from facility_docs.ingestion.dedup import DedupIndex
from facility_docs.ingestion.exceptions import DuplicateContentError, StorageFailureError
from facility_docs.ingestion.models import Category, DedupScope, DocumentRecord, NewDocument

FACILITY_ID = "aaaaaaaa-0000-4000-8000-000000000001"
RESIDENT_ID = "cccccccc-0000-4000-8000-000000000003"
EXISTING_ID = "11111111-0000-4000-8000-000000000001"


def _new_document(resident_id: str | None = RESIDENT_ID) -> NewDocument:
    return NewDocument(
        id="22222222-0000-4000-8000-000000000002",
        title="Insurance card",
        description=None,
        category=Category.INSURANCE,
        file_path=f"{FACILITY_ID}/{RESIDENT_ID}/insurance_card-abc.pdf",
        file_name="insurance_card-abc.pdf",
        file_size=512,
        mime_type="application/pdf",
        file_hash="f" * 64,
        facility_id=FACILITY_ID,
        resident_id=resident_id,
        uploaded_by="user-1",
        expiry_date=date(2027, 1, 1),
        confidential=False,
        tags=(),
    )


def _record_for(document: NewDocument) -> DocumentRecord:
    return DocumentRecord(
        id=document.id,
        title=document.title,
        description=document.description,
        category=document.category,
        file_path=document.file_path,
        file_name=document.file_name,
        file_size=document.file_size,
        mime_type=document.mime_type,
        file_hash=document.file_hash,
        facility_id=document.facility_id,
        resident_id=document.resident_id,
        uploaded_by=document.uploaded_by,
        expiry_date=document.expiry_date,
        confidential=document.confidential,
        tags=document.tags,
    )


class TestCheckAndReserve:
    def test_returns_reserved_record(self) -> None:
        repo = MagicMock(spec=DocumentsRepository)
        document = _new_document()
        repo.insert_unique.return_value = _record_for(document)
        conn = MagicMock()

        result = DedupIndex(repo).check_and_reserve(conn, document)

        assert result.id == document.id
        repo.insert_unique.assert_called_once_with(conn, document)
        repo.find_id_by_digest.assert_not_called()

    def test_conflict_raises_duplicate_with_existing_id(self) -> None:
        repo = MagicMock(spec=DocumentsRepository)
        repo.insert_unique.return_value = None
        repo.find_id_by_digest.return_value = EXISTING_ID
        conn = MagicMock()

        with pytest.raises(DuplicateContentError) as exc_info:
            DedupIndex(repo).check_and_reserve(conn, _new_document())

        assert exc_info.value.existing_document_id == EXISTING_ID
        repo.find_id_by_digest.assert_called_once_with(
            conn, DedupScope(FACILITY_ID, RESIDENT_ID), "f" * 64
        )

    def test_facility_scope_used_without_resident(self) -> None:
        repo = MagicMock(spec=DocumentsRepository)
        repo.insert_unique.return_value = None
        repo.find_id_by_digest.return_value = EXISTING_ID
        conn = MagicMock()

        with pytest.raises(DuplicateContentError):
            DedupIndex(repo).check_and_reserve(conn, _new_document(resident_id=None))

        scope = repo.find_id_by_digest.call_args[0][1]
        assert scope == DedupScope(FACILITY_ID, None)
        assert not scope.by_resident

    def test_conflict_without_visible_holder_is_storage_failure(self) -> None:
        repo = MagicMock(spec=DocumentsRepository)
        repo.insert_unique.return_value = None
        repo.find_id_by_digest.return_value = None

        with pytest.raises(StorageFailureError):
            DedupIndex(repo).check_and_reserve(MagicMock(), _new_document())
