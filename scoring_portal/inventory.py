"""
Resource inventory backed by Google Cloud Asset Inventory.

Uses SearchAllResources so every supported resource kind is fetched in a
single paged call per project.
"""
import logging
from typing import Iterable, List, Optional

from .availability_rater import RatingError, ResourceRecord

logger = logging.getLogger(__name__)


def _availability_type(raw: dict) -> Optional[str]:
    """Cloud SQL reports its availability type only in the full resource body."""
    for versioned in raw.get('versioned_resources', []) or []:
        settings = (versioned.get('resource') or {}).get('settings') or {}
        if settings.get('availabilityType'):
            return settings['availabilityType']
    attributes = raw.get('additional_attributes') or {}
    return attributes.get('availabilityType')


def to_resource_record(raw: dict) -> ResourceRecord:
    attributes = dict(raw.get('additional_attributes') or {})
    availability_type = _availability_type(raw)
    if availability_type:
        attributes['availability_type'] = availability_type

    return ResourceRecord(
        asset_kind=raw.get('asset_type', ''),
        location=raw.get('location', ''),
        labels=dict(raw.get('labels') or {}),
        status=raw.get('state', ''),
        attributes=attributes,
    )


class AssetInventory:
    """Lists labelled resources of a project."""

    def __init__(self, timeout: float = 30):
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        """Lazy-load Cloud Asset client."""
        if self._client is None:
            try:
                from google.cloud import asset_v1
                self._client = asset_v1.AssetServiceClient()
            except ImportError:
                raise RuntimeError("google-cloud-asset package not installed")
        return self._client

    def list_resources(self, project_id: str, asset_kinds: Iterable[str]) -> List[ResourceRecord]:
        from google.cloud import asset_v1
        from google.api_core.exceptions import GoogleAPIError

        if not project_id:
            raise RatingError("project id is not set")

        request = asset_v1.SearchAllResourcesRequest(
            scope=f"projects/{project_id}",
            asset_types=list(asset_kinds),
            read_mask="*",
        )

        try:
            records = []
            for result in self.client.search_all_resources(request=request, timeout=self.timeout):
                raw = asset_v1.ResourceSearchResult.to_dict(result)
                records.append(to_resource_record(raw))
        except GoogleAPIError as e:
            raise RatingError(f"failed to get all resource info via Cloud Asset Inventory: {e}") from e

        logger.debug(f"Found {len(records)} resources in project {project_id}")
        return records
