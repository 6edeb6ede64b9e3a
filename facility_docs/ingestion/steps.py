import uuid
from collections.abc import Callable
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any

import psycopg

from facility_docs.ingestion.dedup import DedupIndex
from facility_docs.ingestion.hasher import ContentHasher
from facility_docs.ingestion.models import KnownType, NewDocument, PipelineState, SniffResult
from facility_docs.ingestion.pipeline import IngestContext, IngestStep
from facility_docs.ingestion.policy import TypePolicyValidator
from facility_docs.ingestion.storage import DocumentStorage
from facility_docs.ingestion.tenancy import TenancyChecker
from facility_docs.logging.logger import Log

ConnectionFactory = Callable[[], AbstractContextManager[psycopg.Connection[Any]]]


class SniffStep(IngestStep):
    def __init__(self, sniffer: Callable[[Path], SniffResult]) -> None:
        self._sniffer = sniffer

    def run(self, context: IngestContext) -> IngestContext:
        context.sniff = self._sniffer(context.staged.path)
        context.state = PipelineState.SNIFFED
        Log.debug("Sniffed upload", handle=context.staged.handle, sniff=context.sniff)
        return context


class ValidateTypeStep(IngestStep):
    def __init__(self, validator: TypePolicyValidator) -> None:
        self._validator = validator

    def run(self, context: IngestContext) -> IngestContext:
        context.resolved_type = self._validator.validate(
            context.metadata.declared_extension,
            context.metadata.declared_mime,
            context.sniff,
        )
        context.state = PipelineState.TYPE_VALIDATED
        return context


class ResolveTenancyStep(IngestStep):
    def __init__(self, tenancy_checker: TenancyChecker) -> None:
        self._tenancy_checker = tenancy_checker

    def run(self, context: IngestContext) -> IngestContext:
        context.facility_id = self._tenancy_checker.resolve(
            context.metadata.facility_id,
            context.metadata.resident_id,
            context.scope,
        )
        context.state = PipelineState.TENANCY_VALIDATED
        return context


class HashStep(IngestStep):
    def __init__(self, hasher: ContentHasher) -> None:
        self._hasher = hasher

    def run(self, context: IngestContext) -> IngestContext:
        context.file_hash = self._hasher.hash_file(context.staged.path)
        context.state = PipelineState.HASHED
        return context


class CommitStep(IngestStep):
    """Reserve the digest, move the bytes, then commit the row, all or nothing.

    The row insert and the byte move share one transaction: if the move
    fails the row is rolled back, and if the commit fails after the move the
    canonical file is removed again.
    """

    def __init__(
        self,
        dedup_index: DedupIndex,
        storage: DocumentStorage,
        connection_factory: ConnectionFactory,
    ) -> None:
        self._dedup_index = dedup_index
        self._storage = storage
        self._connection_factory = connection_factory

    def run(self, context: IngestContext) -> IngestContext:
        if context.resolved_type is None or context.facility_id is None or not context.file_hash:
            raise ValueError("IngestContext must be type-validated, tenancy-resolved and hashed")

        document = self._build_document(context, context.resolved_type, context.facility_id)
        moved = False
        try:
            with self._connection_factory() as conn:
                with conn.transaction():
                    record = self._dedup_index.check_and_reserve(conn, document)
                    context.state = PipelineState.DEDUP_CHECKED
                    self._storage.commit(context.staged, document.file_path)
                    moved = True
        except BaseException:
            if moved:
                self._remove_orphaned_canonical(document.file_path)
            raise

        context.document = record
        context.state = PipelineState.COMMITTED
        return context

    def _build_document(
        self, context: IngestContext, resolved_type: KnownType, facility_id: str
    ) -> NewDocument:
        metadata = context.metadata
        file_name = self._storage.canonical_filename(metadata.filename, resolved_type.extension)
        return NewDocument(
            id=str(uuid.uuid4()),
            title=metadata.title,
            description=metadata.description,
            category=metadata.category,
            file_path=self._storage.relative_path_for(
                facility_id, metadata.resident_id, file_name
            ),
            file_name=file_name,
            file_size=context.staged.size_bytes,
            mime_type=resolved_type.mime,
            file_hash=context.file_hash,
            facility_id=facility_id,
            resident_id=metadata.resident_id,
            uploaded_by=context.scope.user_id,
            expiry_date=metadata.expiry_date,
            confidential=metadata.confidential,
            tags=metadata.tags,
        )

    def _remove_orphaned_canonical(self, relative_path: str) -> None:
        try:
            self._storage.delete(relative_path)
        except OSError as exc:
            Log.error(f"Failed to remove uncommitted document file: {exc}", path=relative_path)
