import sys
from pathlib import Path

import click

from facility_docs.config.settings import Settings
from facility_docs.database.connection import close_pool, get_connection, init_pool
from facility_docs.database.repositories.documents_repository import DocumentsRepository
from facility_docs.database.repositories.tenancy_repository import TenancyRepository
from facility_docs.ingestion.dedup import DedupIndex
from facility_docs.ingestion.hasher import ContentHasher
from facility_docs.ingestion.models import DeclaredMetadata, RequesterScope
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
from facility_docs.logging.logger import Log

EXIT_REJECTED = 1
EXIT_RETRYABLE = 75  # EX_TEMPFAIL


def build_orchestrator(
    settings: Settings,
    policy: TypePolicy | None = None,
) -> IngestionOrchestrator:
    """Build an IngestionOrchestrator with all required collaborators."""
    doc_repo = DocumentsRepository()
    storage = DocumentStorage(Path(settings.storage_root))
    stager = UploadStager(Path(settings.staging_dir), chunk_size=settings.upload_chunk_bytes)
    steps = [
        SniffStep(sniffer=sniff_file),
        ValidateTypeStep(TypePolicyValidator(policy or TypePolicy.default())),
        ResolveTenancyStep(TenancyChecker(TenancyRepository())),
        HashStep(ContentHasher(chunk_size=settings.upload_chunk_bytes)),
        CommitStep(
            dedup_index=DedupIndex(doc_repo),
            storage=storage,
            connection_factory=get_connection,
        ),
    ]
    return IngestionOrchestrator(
        stager=stager,
        steps=steps,
        storage=storage,
        doc_repo=doc_repo,
        max_upload_bytes=settings.max_upload_bytes,
    )


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL from the environment")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Facility document ingestion tools."""
    settings = Settings()
    Log.configure(log_level or settings.log_level)
    ctx.obj = settings


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--title", required=True)
@click.option("--category", required=True)
@click.option("--user-id", required=True, help="Uploader id")
@click.option("--scope-facility-id", default=None, help="Restrict the requester to this facility")
@click.option("--facility-id", default=None)
@click.option("--resident-id", default=None)
@click.option("--description", default=None)
@click.option("--mime-type", default=None, help="Client-declared mime type (not trusted)")
@click.option("--expiry-date", default=None, help="YYYY-MM-DD")
@click.option("--confidential", is_flag=True)
@click.option("--tag", "tags", multiple=True)
@click.pass_obj
def ingest(
    settings: Settings,
    file: Path,
    title: str,
    category: str,
    user_id: str,
    scope_facility_id: str | None,
    facility_id: str | None,
    resident_id: str | None,
    description: str | None,
    mime_type: str | None,
    expiry_date: str | None,
    confidential: bool,
    tags: tuple[str, ...],
) -> None:
    """Ingest FILE as a new document."""
    metadata = DeclaredMetadata(
        title=title,
        category=category,
        filename=file.name,
        mime_type=mime_type,
        description=description,
        facility_id=facility_id,
        resident_id=resident_id,
        expiry_date=expiry_date,
        confidential=confidential,
        tags=list(tags),
    )
    scope = RequesterScope(user_id=user_id, facility_id=scope_facility_id)

    init_pool(settings)
    try:
        orchestrator = build_orchestrator(settings)
        with file.open("rb") as stream:
            result = orchestrator.ingest(stream, metadata, scope)
    finally:
        close_pool()

    error = result.error
    if error is None and result.document is not None:
        click.echo(result.document.id)
        return
    if error is not None:
        click.echo(f"{error.code}: {error.user_message}", err=True)
        sys.exit(EXIT_RETRYABLE if error.retryable else EXIT_REJECTED)


@cli.command()
@click.argument("document_id")
@click.pass_obj
def remove(settings: Settings, document_id: str) -> None:
    """Delete DOCUMENT_ID and its stored bytes."""
    init_pool(settings)
    try:
        result = build_orchestrator(settings).remove(document_id)
    finally:
        close_pool()

    if not result.found:
        click.echo("NotFound: Document not found", err=True)
        sys.exit(EXIT_REJECTED)
    for warning in result.warnings:
        click.echo(f"warning: {warning}", err=True)
    click.echo(f"removed {document_id}")


@cli.command("sweep-staging")
@click.option("--older-than", type=int, default=None, help="Age in seconds")
@click.pass_obj
def sweep_staging(settings: Settings, older_than: int | None) -> None:
    """Delete staging files abandoned by crashed uploads."""
    stager = UploadStager(Path(settings.staging_dir))
    max_age = older_than if older_than is not None else settings.staging_max_age_seconds
    removed = stager.sweep(max_age)
    click.echo(f"removed {removed} staging files")


if __name__ == "__main__":
    cli()
