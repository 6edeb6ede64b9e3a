from abc import ABC, abstractmethod
from dataclasses import dataclass

from facility_docs.ingestion.models import (
    UNKNOWN,
    DocumentRecord,
    KnownType,
    PipelineState,
    RequesterScope,
    SniffResult,
    StagedUpload,
    ValidatedMetadata,
)


@dataclass(slots=True)
class IngestContext:
    """State carried through one ingestion pipeline run."""

    metadata: ValidatedMetadata
    scope: RequesterScope
    staged: StagedUpload
    state: PipelineState = PipelineState.STAGED
    sniff: SniffResult = UNKNOWN
    resolved_type: KnownType | None = None
    facility_id: str | None = None
    file_hash: str = ""
    document: DocumentRecord | None = None


class IngestStep(ABC):
    @abstractmethod
    def run(self, context: IngestContext) -> IngestContext:
        raise NotImplementedError
