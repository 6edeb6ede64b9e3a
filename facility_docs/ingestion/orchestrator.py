from collections.abc import Sequence

import psycopg

from facility_docs.database.repositories.documents_repository import DocumentsRepository
from facility_docs.ingestion.exceptions import (
    AccessDeniedError,
    DocumentNotFoundError,
    IngestError,
    StorageFailureError,
)
from facility_docs.ingestion.metadata import validate_metadata, validate_update
from facility_docs.ingestion.models import (
    DeclaredMetadata,
    DocumentRecord,
    IngestResult,
    MetadataUpdate,
    PipelineState,
    RemoveResult,
    RequesterScope,
)
from facility_docs.ingestion.pipeline import IngestContext, IngestStep
from facility_docs.ingestion.stager import UploadStager, UploadStream
from facility_docs.ingestion.storage import DocumentStorage
from facility_docs.logging.logger import Log


class IngestionOrchestrator:
    """Runs uploads through the ingestion pipeline and manages stored documents.

    Pipeline: validate metadata -> stage -> sniff -> type policy -> tenancy ->
    hash -> dedup reserve + commit. Any exit short of COMMITTED, including
    cancellation, discards the staged bytes exactly once.
    """

    def __init__(
        self,
        stager: UploadStager,
        steps: Sequence[IngestStep],
        storage: DocumentStorage,
        doc_repo: DocumentsRepository,
        max_upload_bytes: int,
    ) -> None:
        self._stager = stager
        self._steps = list(steps)
        self._storage = storage
        self._doc_repo = doc_repo
        self._max_upload_bytes = max_upload_bytes

    def ingest(
        self,
        stream: UploadStream,
        metadata: DeclaredMetadata,
        scope: RequesterScope,
    ) -> IngestResult:
        """Validate and store one uploaded document.

        Validation failures and storage failures come back as
        ``IngestResult.failure``; only unexpected exceptions propagate, and
        those still leave no staged bytes behind.
        """
        try:
            validated = validate_metadata(metadata)
            staged = self._stager.stage(
                stream,
                self._max_upload_bytes,
                validated.filename,
                validated.declared_mime,
            )
        except IngestError as exc:
            return self._reject(exc, PipelineState.RECEIVED)
        except OSError as exc:
            Log.error(f"Failed to stage upload: {exc}")
            return self._reject(StorageFailureError(), PipelineState.RECEIVED)

        context = IngestContext(metadata=validated, scope=scope, staged=staged)
        try:
            for step in self._steps:
                context = step.run(context)
        except IngestError as exc:
            return self._reject(exc, context.state, handle=staged.handle)
        except (OSError, psycopg.Error) as exc:
            Log.error(f"Storage failure during ingestion: {exc}", handle=staged.handle)
            return self._reject(StorageFailureError(), context.state, handle=staged.handle)
        finally:
            if context.state is not PipelineState.COMMITTED:
                context.state = PipelineState.REJECTED
                self._stager.discard(staged)

        if context.document is None:
            raise RuntimeError("Pipeline reached COMMITTED without a document")
        Log.info(
            "Document ingested",
            document_id=context.document.id,
            facility_id=context.document.facility_id,
            size_bytes=context.document.file_size,
        )
        return IngestResult.success(context.document)

    def get(self, document_id: str, scope: RequesterScope | None = None) -> DocumentRecord:
        """Fetch one document.

        Raises:
            DocumentNotFoundError: unknown id.
            AccessDeniedError: the document belongs to another facility.
        """
        record = self._doc_repo.find_by_id(document_id)
        self._check_access(record, scope)
        return record

    def update_metadata(
        self,
        document_id: str,
        update: MetadataUpdate,
        scope: RequesterScope | None = None,
    ) -> DocumentRecord:
        """Edit title, description, category, tags, expiry or confidentiality.

        Raises:
            DocumentNotFoundError, AccessDeniedError, IngestError (invalid field values)
        """
        record = self.get(document_id, scope)
        changes = validate_update(update)
        if not changes:
            return record
        updated = self._doc_repo.update_metadata(document_id, changes)
        Log.info("Document metadata updated", document_id=document_id, fields=sorted(changes))
        return updated

    def remove(self, document_id: str, scope: RequesterScope | None = None) -> RemoveResult:
        """Delete a document record and its stored bytes.

        Missing bytes never block the record deletion; they are reported as a
        warning on the result.

        Raises:
            AccessDeniedError: the document belongs to another facility.
        """
        try:
            record = self.get(document_id, scope)
        except DocumentNotFoundError:
            return RemoveResult(found=False)

        deleted = self._doc_repo.delete(document_id)
        if deleted is None:
            return RemoveResult(found=False)

        warnings: tuple[str, ...] = ()
        try:
            if not self._storage.delete(deleted.file_path):
                warnings = ("Document file was already missing from storage",)
        except (OSError, ValueError) as exc:
            Log.error(f"Failed to delete document file: {exc}", document_id=document_id)
            warnings = ("Document file could not be deleted from storage",)

        for warning in warnings:
            Log.warning(warning, document_id=document_id)
        Log.info("Document removed", document_id=document_id, facility_id=record.facility_id)
        return RemoveResult(found=True, warnings=warnings)

    @staticmethod
    def _check_access(record: DocumentRecord, scope: RequesterScope | None) -> None:
        if scope is not None and not scope.can_access(record.facility_id):
            raise AccessDeniedError()

    @staticmethod
    def _reject(
        error: IngestError, state: PipelineState, handle: str | None = None
    ) -> IngestResult:
        Log.info(
            f"Upload rejected: {error.user_message}",
            code=error.code,
            state=state.value,
            handle=handle,
        )
        return IngestResult.failure(error)
