from facility_docs.database.repositories.tenancy_repository import TenancyRepository
from facility_docs.ingestion.exceptions import (
    AccessDeniedError,
    FacilityMismatchError,
    FacilityNotFoundError,
    MissingFacilityError,
    ResidentNotFoundError,
)
from facility_docs.ingestion.models import RequesterScope


class TenancyChecker:
    """Resolves the owning facility of an upload and checks it against the requester."""

    def __init__(self, tenancy_repo: TenancyRepository) -> None:
        self._tenancy_repo = tenancy_repo

    def resolve(
        self,
        declared_facility_id: str | None,
        declared_resident_id: str | None,
        scope: RequesterScope,
    ) -> str:
        """Return the facility id the document will belong to.

        The resident's facility wins over the requester's default; a declared
        facility that contradicts the resident's is rejected, never corrected.

        Raises:
            ResidentNotFoundError, FacilityMismatchError, MissingFacilityError,
            AccessDeniedError, FacilityNotFoundError
        """
        if declared_resident_id is not None:
            resident = self._tenancy_repo.find_resident(declared_resident_id)
            if resident is None:
                raise ResidentNotFoundError()
            if declared_facility_id is not None and declared_facility_id != resident.facility_id:
                raise FacilityMismatchError()
            facility_id = resident.facility_id
        elif declared_facility_id is not None:
            facility_id = declared_facility_id
        elif scope.facility_id is not None:
            facility_id = scope.facility_id
        else:
            raise MissingFacilityError()

        if not scope.can_access(facility_id):
            raise AccessDeniedError()

        facility = self._tenancy_repo.find_facility(facility_id)
        if facility is None or not facility.active:
            raise FacilityNotFoundError()
        return facility.id
