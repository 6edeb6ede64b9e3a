"""In-memory stand-ins for the database layer used by the pipeline unit tests."""

import dataclasses
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import psycopg
import pytest

from facility_docs.database.models import FacilityRow, ResidentRow
from facility_docs.database.repositories.documents_repository import DocumentsRepository
from facility_docs.database.repositories.tenancy_repository import TenancyRepository
from facility_docs.ingestion.dedup import DedupIndex
from facility_docs.ingestion.exceptions import DocumentNotFoundError
from facility_docs.ingestion.hasher import ContentHasher
from facility_docs.ingestion.models import DedupScope, DocumentRecord, NewDocument
from facility_docs.ingestion.orchestrator import IngestionOrchestrator
from facility_docs.ingestion.policy import TypePolicy, TypePolicyValidator
from facility_docs.ingestion.sniffer import sniff_file
from facility_docs.ingestion.stager import UploadStager
from facility_docs.ingestion.steps import (
    CommitStep,
    HashStep,
    ResolveTenancyStep,
    SniffStep,
    ValidateTypeStep,
)
from facility_docs.ingestion.storage import DocumentStorage
from facility_docs.ingestion.tenancy import TenancyChecker

FACILITY_A = "aaaaaaaa-0000-4000-8000-000000000001"
FACILITY_B = "bbbbbbbb-0000-4000-8000-000000000002"
FACILITY_CLOSED = "eeeeeeee-0000-4000-8000-000000000005"
RESIDENT_R = "cccccccc-0000-4000-8000-000000000003"
RESIDENT_OTHER = "dddddddd-0000-4000-8000-000000000004"

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class FakeDatabase:
    """Documents keyed by id, with the same uniqueness rules as the real indexes."""

    def __init__(self) -> None:
        self.facilities: dict[str, FacilityRow] = {
            FACILITY_A: FacilityRow(id=FACILITY_A, name="Maple House", active=True),
            FACILITY_B: FacilityRow(id=FACILITY_B, name="Oak Lodge", active=True),
            FACILITY_CLOSED: FacilityRow(id=FACILITY_CLOSED, name="Elm Court", active=False),
        }
        self.residents: dict[str, ResidentRow] = {
            RESIDENT_R: ResidentRow(id=RESIDENT_R, facility_id=FACILITY_A),
            RESIDENT_OTHER: ResidentRow(id=RESIDENT_OTHER, facility_id=FACILITY_B),
        }
        self.documents: dict[str, DocumentRecord] = {}
        self.fail_next_commit = False

    def holder_of(self, scope: DedupScope, file_hash: str) -> DocumentRecord | None:
        for record in self.documents.values():
            if record.file_hash != file_hash:
                continue
            if scope.by_resident and record.resident_id == scope.resident_id:
                return record
            if (
                not scope.by_resident
                and record.resident_id is None
                and record.facility_id == scope.facility_id
            ):
                return record
        return None


class FakeConnection:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        snapshot = dict(self.db.documents)
        try:
            yield
            if self.db.fail_next_commit:
                self.db.fail_next_commit = False
                raise psycopg.OperationalError("connection lost during commit")
        except BaseException:
            self.db.documents = snapshot
            raise


class FakeDocumentsRepository(DocumentsRepository):
    def __init__(self, db: FakeDatabase) -> None:
        self._db = db

    def insert_unique(self, conn: Any, document: NewDocument) -> DocumentRecord | None:
        if self._db.holder_of(document.scope, document.file_hash) is not None:
            return None
        now = datetime.now(timezone.utc)
        record = DocumentRecord(
            **{f.name: getattr(document, f.name) for f in dataclasses.fields(NewDocument)},
            created_at=now,
            updated_at=now,
        )
        self._db.documents[record.id] = record
        return record

    def find_id_by_digest(self, conn: Any, scope: DedupScope, file_hash: str) -> str | None:
        holder = self._db.holder_of(scope, file_hash)
        return holder.id if holder is not None else None

    def find_by_id(self, document_id: str) -> DocumentRecord:
        record = self._db.documents.get(document_id)
        if record is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return record

    def delete(self, document_id: str) -> DocumentRecord | None:
        return self._db.documents.pop(document_id, None)

    def update_metadata(self, document_id: str, changes: dict[str, Any]) -> DocumentRecord:
        record = self.find_by_id(document_id)
        updated = dataclasses.replace(record, **changes)
        self._db.documents[document_id] = updated
        return updated


class FakeTenancyRepository(TenancyRepository):
    def __init__(self, db: FakeDatabase) -> None:
        self._db = db

    def find_facility(self, facility_id: str) -> FacilityRow | None:
        return self._db.facilities.get(facility_id)

    def find_resident(self, resident_id: str) -> ResidentRow | None:
        return self._db.residents.get(resident_id)


@dataclasses.dataclass
class PipelineHarness:
    db: FakeDatabase
    orchestrator: IngestionOrchestrator
    stager: UploadStager
    storage: DocumentStorage
    staging_dir: Path
    storage_root: Path

    def staged_files(self) -> list[Path]:
        if not self.staging_dir.exists():
            return []
        return list(self.staging_dir.iterdir())

    def stored_files(self) -> list[Path]:
        if not self.storage_root.exists():
            return []
        return [path for path in self.storage_root.rglob("*") if path.is_file()]


@pytest.fixture()
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture()
def harness(tmp_path: Path, fake_db: FakeDatabase) -> PipelineHarness:
    staging_dir = tmp_path / "staging"
    storage_root = tmp_path / "documents"
    doc_repo = FakeDocumentsRepository(fake_db)
    stager = UploadStager(staging_dir, chunk_size=1024)
    storage = DocumentStorage(storage_root)

    @contextmanager
    def connection_factory() -> Generator[FakeConnection, None, None]:
        yield FakeConnection(fake_db)

    steps = [
        SniffStep(sniffer=sniff_file),
        ValidateTypeStep(TypePolicyValidator(TypePolicy.default())),
        ResolveTenancyStep(TenancyChecker(FakeTenancyRepository(fake_db))),
        HashStep(ContentHasher(chunk_size=1024)),
        CommitStep(
            dedup_index=DedupIndex(doc_repo),
            storage=storage,
            connection_factory=connection_factory,
        ),
    ]
    orchestrator = IngestionOrchestrator(
        stager=stager,
        steps=steps,
        storage=storage,
        doc_repo=doc_repo,
        max_upload_bytes=MAX_UPLOAD_BYTES,
    )
    return PipelineHarness(
        db=fake_db,
        orchestrator=orchestrator,
        stager=stager,
        storage=storage,
        staging_dir=staging_dir,
        storage_root=storage_root,
    )
