"""Data models shared by datastores, the API layer and the scanners."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional

PageNumber = str
"""Opaque, possibly encrypted, token naming a page of results."""

MetadataMap = dict
"""Free-form vulnerability metadata, stored as a JSON object."""

DEBIAN_RELEASES: Mapping[str, str] = MappingProxyType(
    {
        # Code names
        "squeeze": "6",
        "wheezy": "7",
        "jessie": "8",
        "stretch": "9",
        "buster": "10",
        "sid": "unstable",
        # Class names
        "oldoldstable": "7",
        "oldstable": "8",
        "stable": "9",
        "testing": "10",
        "unstable": "unstable",
    }
)
"""Debian code names and class names mapped to version numbers."""

UBUNTU_RELEASES: Mapping[str, str] = MappingProxyType(
    {
        "precise": "12.04",
        "quantal": "12.10",
        "raring": "13.04",
        "trusty": "14.04",
        "utopic": "14.10",
        "vivid": "15.04",
        "wily": "15.10",
        "xenial": "16.04",
        "yakkety": "16.10",
        "zesty": "17.04",
        "artful": "17.10",
    }
)
"""Ubuntu code names mapped to version numbers."""


@dataclass
class Processors:
    """Listers and detectors used to scan a layer or an ancestry."""

    listers: list[str] = field(default_factory=list)
    detectors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Layer:
    """A layer of an image, identified by its content hash."""

    hash: str = ""


@dataclass
class Ancestry:
    """All layers of an image in order; each layer is the parent of the next."""

    name: str = ""
    layers: list[Layer] = field(default_factory=list)


@dataclass
class AncestryWithFeatures(Ancestry):
    """An ancestry with the namespaced features detected in it."""

    processed_by: Processors = field(default_factory=Processors)
    features: list[NamespacedFeature] = field(default_factory=list)

    @property
    def ancestry(self) -> Ancestry:
        """The plain ancestry, without features or processors."""
        return Ancestry(name=self.name, layers=list(self.layers))


@dataclass(frozen=True)
class Namespace:
    """Context around features, e.g. ``debian:7``."""

    name: str = ""
    version_format: str = ""


@dataclass(frozen=True)
class Feature:
    """A package detected in a layer whose namespace is not yet known."""

    name: str = ""
    version: str = ""
    version_format: str = ""


@dataclass(frozen=True)
class NamespacedFeature:
    """A feature with a known namespace; it can be affected by vulnerabilities."""

    feature: Feature = field(default_factory=Feature)
    namespace: Namespace = field(default_factory=Namespace)

    @property
    def name(self) -> str:
        return self.feature.name

    @property
    def version(self) -> str:
        return self.feature.version

    @property
    def version_format(self) -> str:
        return self.feature.version_format


@dataclass
class LayerWithContent:
    """A layer with the namespaces and features detected in it."""

    layer: Layer = field(default_factory=Layer)
    processed_by: Processors = field(default_factory=Processors)
    namespaces: list[Namespace] = field(default_factory=list)
    features: list[Feature] = field(default_factory=list)

    @property
    def hash(self) -> str:
        return self.layer.hash


@dataclass
class Vulnerability:
    """A CVE or similar vulnerability report."""

    name: str = ""
    namespace: Namespace = field(default_factory=Namespace)
    description: str = ""
    link: str = ""
    severity: str = ""
    metadata: Optional[dict[str, Any]] = None


@dataclass
class VulnerabilityWithFixedIn(Vulnerability):
    """A vulnerability with the version of a feature that fixes it."""

    fixed_in_version: str = ""


@dataclass
class AffectedNamespacedFeature:
    """A namespaced feature with the vulnerabilities affecting it."""

    namespaced_feature: NamespacedFeature = field(default_factory=NamespacedFeature)
    affected_by: list[VulnerabilityWithFixedIn] = field(default_factory=list)


@dataclass
class NullableAffectedNamespacedFeature(AffectedNamespacedFeature):
    """An affected namespaced feature and whether it was found in the store."""

    valid: bool = False


@dataclass
class AffectedFeature:
    """A feature name within a namespace, bound to a vulnerability.

    An empty ``fixed_in_version`` means the unaffected version is unknown;
    ``affected_version`` holds the affected version range.
    """

    namespace: Namespace = field(default_factory=Namespace)
    feature_name: str = ""
    fixed_in_version: str = ""
    affected_version: str = ""


@dataclass(frozen=True)
class VulnerabilityID:
    """Unique identifier of a vulnerability: its name within a namespace."""

    name: str = ""
    namespace: str = ""


@dataclass
class VulnerabilityWithAffected(Vulnerability):
    """A vulnerability with all known affected features."""

    affected: list[AffectedFeature] = field(default_factory=list)


@dataclass
class NullableVulnerability(VulnerabilityWithAffected):
    """A vulnerability and whether it was found in the store."""

    valid: bool = False


@dataclass
class PagedVulnerableAncestries(Vulnerability):
    """A vulnerability with one page of the ancestries it affects.

    ``affected`` maps a stream index to an ancestry name; indexes grow
    from one page to the next.
    """

    affected: dict[int, str] = field(default_factory=dict)
    limit: int = 0
    current_page: PageNumber = ""
    next_page: PageNumber = ""
    end: bool = False


@dataclass
class NotificationHook:
    """A message telling another service a notification is ready to read."""

    name: str = ""
    created: Optional[datetime] = None
    notified: Optional[datetime] = None
    deleted: Optional[datetime] = None


@dataclass
class VulnerabilityNotification(NotificationHook):
    """A notification about a vulnerability changing."""

    old: Optional[Vulnerability] = None
    new: Optional[Vulnerability] = None


@dataclass
class VulnerabilityNotificationWithVulnerable(NotificationHook):
    """A notification with pages of the ancestries affected by the change."""

    old: Optional[PagedVulnerableAncestries] = None
    new: Optional[PagedVulnerableAncestries] = None


def decode_metadata(value: Optional[str]) -> Optional[dict[str, Any]]:
    """Decode metadata stored as JSON text; ``None`` stays ``None``."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"metadata must be stored as text, got {type(value).__name__}")
    decoded = json.loads(value)
    if decoded is None:
        return None
    if not isinstance(decoded, dict):
        raise ValueError("metadata must be a JSON object")
    return decoded


def encode_metadata(metadata: Optional[Mapping[str, Any]]) -> str:
    """Encode metadata as compact JSON text with sorted keys."""
    if metadata is None:
        return "null"
    return json.dumps(dict(metadata), sort_keys=True, separators=(",", ":"))