"""Conversion of datastore models into API messages."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from layerscan.models import (
    Ancestry,
    Layer,
    NamespacedFeature,
    PagedVulnerableAncestries,
    Vulnerability,
    VulnerabilityNotificationWithVulnerable,
    VulnerabilityWithFixedIn,
    encode_metadata,
)

MAX_VERSION = "MaxVersion"
"""Sentinel version greater than every other version."""

NO_VERSION = "None"
"""How a feature carrying ``MAX_VERSION`` is shown to API clients."""


@dataclass
class ApiVulnerability:
    name: str = ""
    namespace_name: str = ""
    description: str = ""
    link: str = ""
    severity: str = ""
    metadata: str = ""
    fixed_by: str = ""


@dataclass
class ApiFeature:
    name: str = ""
    namespace_name: str = ""
    version: str = ""
    version_format: str = ""
    vulnerabilities: list[ApiVulnerability] = field(default_factory=list)


@dataclass
class ApiLayer:
    hash: str = ""


@dataclass
class ApiAncestry:
    name: str = ""
    layers: list[ApiLayer] = field(default_factory=list)
    features: list[ApiFeature] = field(default_factory=list)
    scanned_listers: list[str] = field(default_factory=list)
    scanned_detectors: list[str] = field(default_factory=list)


@dataclass
class IndexedAncestryName:
    name: str = ""
    index: int = 0


@dataclass
class ApiPagedVulnerableAncestries:
    vulnerability: Optional[ApiVulnerability] = None
    current_page: str = ""
    next_page: str = ""
    limit: int = 0
    ancestries: list[IndexedAncestryName] = field(default_factory=list)


@dataclass
class ApiNotification:
    name: str = ""
    created: str = ""
    notified: str = ""
    deleted: str = ""
    old: Optional[ApiPagedVulnerableAncestries] = None
    new: Optional[ApiPagedVulnerableAncestries] = None


def vulnerability_from_model(vulnerability: Vulnerability) -> ApiVulnerability:
    """Convert a vulnerability; its metadata becomes JSON text, empty if absent."""
    metadata = ""
    if vulnerability.metadata is not None:
        metadata = encode_metadata(vulnerability.metadata)
    return ApiVulnerability(
        name=vulnerability.name,
        namespace_name=vulnerability.namespace.name,
        description=vulnerability.description,
        link=vulnerability.link,
        severity=str(vulnerability.severity),
        metadata=metadata,
    )


def vulnerability_with_fixed_in_from_model(
    vulnerability: VulnerabilityWithFixedIn,
) -> ApiVulnerability:
    """Convert a vulnerability along with the version that fixes it."""
    converted = vulnerability_from_model(vulnerability)
    converted.fixed_by = vulnerability.fixed_in_version
    return converted


def paged_vulnerable_ancestries_from_model(
    paged: Optional[PagedVulnerableAncestries],
) -> Optional[ApiPagedVulnerableAncestries]:
    """Convert a page of affected ancestries; the next page is empty on the last page."""
    if paged is None:
        return None
    return ApiPagedVulnerableAncestries(
        vulnerability=vulnerability_from_model(paged),
        current_page=paged.current_page,
        next_page="" if paged.end else paged.next_page,
        limit=paged.limit,
        ancestries=[
            IndexedAncestryName(name=name, index=index)
            for index, name in sorted(paged.affected.items())
        ],
    )


def _unix(moment: Optional[datetime]) -> str:
    if moment is None:
        return ""
    return str(math.floor(moment.timestamp()))


def notification_from_model(
    notification: VulnerabilityNotificationWithVulnerable,
) -> ApiNotification:
    """Convert a notification; its times become Unix seconds, empty when unset."""
    return ApiNotification(
        name=notification.name,
        created=_unix(notification.created),
        notified=_unix(notification.notified),
        deleted=_unix(notification.deleted),
        old=paged_vulnerable_ancestries_from_model(notification.old),
        new=paged_vulnerable_ancestries_from_model(notification.new),
    )


def layer_from_model(layer: Layer) -> ApiLayer:
    """Convert a layer."""
    return ApiLayer(hash=layer.hash)


def ancestry_from_model(ancestry: Ancestry) -> ApiAncestry:
    """Convert an ancestry and its layers, keeping their order."""
    return ApiAncestry(name=ancestry.name, layers=[layer_from_model(l) for l in ancestry.layers])


def namespaced_feature_from_model(feature: NamespacedFeature) -> ApiFeature:
    """Convert a namespaced feature; the maximal version is shown as ``"None"``."""
    version = feature.feature.version
    if version == MAX_VERSION:
        version = NO_VERSION
    return ApiFeature(
        name=feature.feature.name,
        namespace_name=feature.namespace.name,
        version_format=feature.namespace.version_format,
        version=version,
    )