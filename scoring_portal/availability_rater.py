"""
Availability rating of a participant's cloud topology.

Each required service role (e.g. the web frontend and the database) must be
served by at least one labelled resource. The role's tier is the best tier
any supported resource kind achieves for it, and the overall rating is the
weakest role's tier.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class Tier(IntEnum):
    NONE = 0
    ZONAL = 1
    REGIONAL = 2
    MULTI_REGIONAL = 3


class RatingError(Exception):
    """Inventory failure, rule violation or a required role without resources."""
    pass


@dataclass(frozen=True)
class ResourceRecord:
    asset_kind: str
    location: str
    labels: Mapping[str, str] = field(default_factory=dict)
    status: str = ''
    attributes: Mapping[str, object] = field(default_factory=dict)

    def has_label(self, key: str, value: str) -> bool:
        return self.labels.get(key) == value


# us-central1-a -> (us-central1, us-central1-a)
ZONE_PATTERN = re.compile(r'^(?P<region>[a-z]+-[a-z]+\d+)-(?P<zone>[a-z])$')


def split_location(location: str) -> Tuple[str, Optional[str]]:
    """Return (region, zone); zone is None for regional locations."""
    location = location.rsplit('/', 1)[-1]
    match = ZONE_PATTERN.match(location)
    if match:
        return match.group('region'), location
    return location, None


def tier_for_locations(locations: Iterable[str]) -> Tier:
    regions = set()
    zones = set()
    for location in locations:
        if not location:
            continue
        region, zone = split_location(location)
        regions.add(region)
        if zone:
            zones.add(zone)

    if len(regions) >= 2:
        return Tier.MULTI_REGIONAL
    if len(zones) >= 2:
        return Tier.REGIONAL
    if zones:
        return Tier.ZONAL
    if regions:
        # Regional managed services report only a region
        return Tier.REGIONAL
    return Tier.NONE


# ==================== Resource kind strategies ====================

class ResourceKindRater:
    """Rates one resource kind for a single role label."""

    asset_kinds: Tuple[str, ...] = ()
    healthy_statuses: Tuple[str, ...] = ()

    def qualifying(self, records: Iterable[ResourceRecord], label_key: str, label_val: str) -> List[ResourceRecord]:
        result = []
        for r in records:
            if r.asset_kind not in self.asset_kinds or not r.has_label(label_key, label_val):
                continue
            if self.healthy_statuses and r.status and r.status not in self.healthy_statuses:
                continue
            result.append(r)
        return result

    def rate(self, records: Iterable[ResourceRecord], label_key: str, label_val: str) -> Tier:
        return tier_for_locations(r.location for r in self.qualifying(records, label_key, label_val))


class ComputeInstanceRater(ResourceKindRater):
    asset_kinds = ('compute.googleapis.com/Instance',)
    healthy_statuses = ('RUNNING',)

    def qualifying(self, records, label_key, label_val):
        # Instances without a reported status are not counted
        return [
            r for r in super().qualifying(records, label_key, label_val)
            if r.status == 'RUNNING'
        ]


class AppEngineRater(ResourceKindRater):
    APPLICATION = 'appengine.googleapis.com/Application'
    SERVICE = 'appengine.googleapis.com/Service'
    asset_kinds = (APPLICATION, SERVICE)

    def rate(self, records, label_key, label_val):
        records = list(records)
        is_served = any(
            r.asset_kind == self.APPLICATION and r.status == 'SERVING'
            for r in records
        )
        is_labelled = any(
            r.asset_kind == self.SERVICE and r.has_label(label_key, label_val)
            for r in records
        )
        if is_served and is_labelled:
            return Tier.REGIONAL
        return Tier.NONE


class CloudRunRater(ResourceKindRater):
    asset_kinds = ('run.googleapis.com/Service',)


class CloudFunctionsRater(ResourceKindRater):
    asset_kinds = ('cloudfunctions.googleapis.com/CloudFunction',)
    healthy_statuses = ('ACTIVE',)


class CloudSQLRater(ResourceKindRater):
    """Rated from the instance's own availability type, not its location."""

    asset_kinds = ('sqladmin.googleapis.com/Instance',)
    healthy_statuses = ('RUNNABLE',)

    def rate(self, records, label_key, label_val):
        instances = self.qualifying(records, label_key, label_val)
        if not instances:
            return Tier.NONE

        for instance in instances:
            if str(instance.attributes.get('availability_type', '')).upper() == 'REGIONAL':
                return Tier.REGIONAL
        return Tier.ZONAL


class SpannerRater(ResourceKindRater):
    """Rated from the instance configuration name: regional-* vs multi-region configs."""

    asset_kinds = ('spanner.googleapis.com/Instance',)
    healthy_statuses = ('READY',)

    def rate(self, records, label_key, label_val):
        instances = self.qualifying(records, label_key, label_val)
        if not instances:
            return Tier.NONE

        for instance in instances:
            if 'regional' not in instance.location:
                return Tier.MULTI_REGIONAL
        return Tier.REGIONAL


DEFAULT_RATERS: Tuple[ResourceKindRater, ...] = (
    ComputeInstanceRater(),
    AppEngineRater(),
    CloudRunRater(),
    CloudFunctionsRater(),
    CloudSQLRater(),
    SpannerRater(),
)

DEFAULT_FORBIDDEN_KINDS = ('redis.googleapis.com/Instance',)


def supported_asset_kinds(raters: Iterable[ResourceKindRater] = DEFAULT_RATERS) -> List[str]:
    kinds = []
    for rater in raters:
        for kind in rater.asset_kinds:
            if kind not in kinds:
                kinds.append(kind)
    return kinds


# ==================== Reducer ====================

class AvailabilityRater:
    """Weakest-link rating over all required role labels."""

    def __init__(
        self,
        inventory,
        raters: Iterable[ResourceKindRater] = DEFAULT_RATERS,
        forbidden_kinds: Iterable[str] = DEFAULT_FORBIDDEN_KINDS
    ):
        self.inventory = inventory
        self.raters = tuple(raters)
        self.forbidden_kinds = tuple(forbidden_kinds)

    @property
    def asset_kinds(self) -> List[str]:
        kinds = supported_asset_kinds(self.raters)
        return kinds + [k for k in self.forbidden_kinds if k not in kinds]

    def rate(self, project_id: str, required_labels: Mapping[str, str]) -> Tier:
        if not required_labels:
            raise RatingError("labels are not set")

        logger.info(f"Rating started - ProjectID: {project_id}")
        try:
            records = list(self.inventory.list_resources(project_id, self.asset_kinds))
        except RatingError:
            raise
        except Exception as e:
            raise RatingError(f"failed to get resource info for project {project_id}: {e}") from e

        self.check_rule_violation(records)

        tier = self.rate_records(records, required_labels)
        logger.info(f"Rating finished - ProjectID: {project_id}, tier: {tier.name}")
        return tier

    def check_rule_violation(self, records: Iterable[ResourceRecord]):
        for r in records:
            if r.asset_kind in self.forbidden_kinds:
                raise RatingError(f"rule violation: {r.asset_kind} can't be used in this contest")

    def rate_role(self, records: List[ResourceRecord], label_key: str, label_val: str) -> Tier:
        best = Tier.NONE
        for rater in self.raters:
            best = max(best, rater.rate(records, label_key, label_val))
        return best

    def rate_records(self, records: Iterable[ResourceRecord], required_labels: Mapping[str, str]) -> Tier:
        records = list(records)
        tiers: Dict[str, Tier] = {}
        for key, val in required_labels.items():
            tier = self.rate_role(records, key, val)
            if tier == Tier.NONE:
                raise RatingError(f"Resource labelled {key}:{val} is not found")
            tiers[key] = tier

        return min(tiers.values())
