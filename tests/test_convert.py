import json
from datetime import datetime, timezone

from layerscan.api.convert import (
    MAX_VERSION,
    ApiLayer,
    ancestry_from_model,
    layer_from_model,
    namespaced_feature_from_model,
    notification_from_model,
    paged_vulnerable_ancestries_from_model,
    vulnerability_from_model,
    vulnerability_with_fixed_in_from_model,
)
from layerscan.models import (
    Ancestry,
    Feature,
    Layer,
    Namespace,
    NamespacedFeature,
    PagedVulnerableAncestries,
    Vulnerability,
    VulnerabilityNotificationWithVulnerable,
    VulnerabilityWithFixedIn,
)

DEB7 = Namespace(name="debian:7", version_format="dpkg")


def test_vulnerability_fields_are_copied():
    vuln = Vulnerability(
        name="CVE-OPENSSL-1-DEB7",
        namespace=DEB7,
        description="desc",
        link="https://example.com/cve",
        severity="High",
    )
    converted = vulnerability_from_model(vuln)
    assert converted.name == vuln.name
    assert converted.namespace_name == DEB7.name
    assert converted.description == vuln.description
    assert converted.link == vuln.link
    assert converted.severity == vuln.severity
    assert converted.metadata == ""
    assert converted.fixed_by == ""


def test_vulnerability_metadata_round_trips_as_json():
    metadata = {"NVD": {"CVSSv2": {"Score": 5.0}}, "flag": True}
    converted = vulnerability_from_model(Vulnerability(name="v", metadata=metadata))
    assert json.loads(converted.metadata) == metadata


def test_empty_metadata_is_an_empty_object():
    converted = vulnerability_from_model(Vulnerability(name="v", metadata={}))
    assert json.loads(converted.metadata) == {}


def test_vulnerability_with_fixed_in():
    vuln = VulnerabilityWithFixedIn(name="v", namespace=DEB7, fixed_in_version="2.0")
    converted = vulnerability_with_fixed_in_from_model(vuln)
    assert converted.fixed_by == "2.0"
    assert converted.name == "v"


def test_layer_and_ancestry_keep_order():
    ancestry = Ancestry(name="a", layers=[Layer("layer-1"), Layer("layer-0")])
    converted = ancestry_from_model(ancestry)
    assert converted.name == "a"
    assert converted.layers == [ApiLayer("layer-1"), ApiLayer("layer-0")]
    assert layer_from_model(Layer("layer-0")).hash == "layer-0"
    assert converted.features == []


def test_namespaced_feature_version():
    feature = NamespacedFeature(
        feature=Feature(name="openssl", version="1.0", version_format="dpkg"), namespace=DEB7
    )
    converted = namespaced_feature_from_model(feature)
    assert converted.name == "openssl"
    assert converted.version == "1.0"
    assert converted.namespace_name == DEB7.name
    assert converted.version_format == DEB7.version_format


def test_namespaced_feature_max_version_is_shown_as_none():
    feature = NamespacedFeature(
        feature=Feature(name="openssl", version=MAX_VERSION, version_format="dpkg"),
        namespace=DEB7,
    )
    assert namespaced_feature_from_model(feature).version == "None"


def test_paged_ancestries_none():
    assert paged_vulnerable_ancestries_from_model(None) is None


def test_paged_ancestries_middle_page():
    paged = PagedVulnerableAncestries(
        name="v",
        namespace=DEB7,
        affected={7: "ancestry-b", 3: "ancestry-a"},
        limit=2,
        current_page="page-1",
        next_page="page-2",
        end=False,
    )
    converted = paged_vulnerable_ancestries_from_model(paged)
    assert converted.vulnerability.name == "v"
    assert converted.current_page == "page-1"
    assert converted.next_page == "page-2"
    assert converted.limit == 2
    assert [(a.index, a.name) for a in converted.ancestries] == sorted(paged.affected.items())


def test_paged_ancestries_last_page_has_no_next():
    paged = PagedVulnerableAncestries(name="v", current_page="p", next_page="q", end=True)
    assert paged_vulnerable_ancestries_from_model(paged).next_page == ""


def test_notification_times_and_pages():
    created = datetime.fromtimestamp(1500000000, tz=timezone.utc)
    notification = VulnerabilityNotificationWithVulnerable(
        name="n",
        created=created,
        new=PagedVulnerableAncestries(name="v", affected={1: "a"}),
    )
    converted = notification_from_model(notification)
    assert converted.name == "n"
    assert converted.created == "1500000000"
    assert converted.notified == ""
    assert converted.deleted == ""
    assert converted.old is None
    assert converted.new.vulnerability.name == "v"
    assert [a.name for a in converted.new.ancestries] == ["a"]