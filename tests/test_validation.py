import pytest

from api.models import CloudPartition, IssueKind, PreflightIssue
from api.services.policy_binder import build_operator_role_requests
from api.validation import (
    DuplicateResource,
    InvalidReference,
    TopologyConflict,
    is_valid_kms_key_arn,
    is_valid_role_arn,
    raise_for_issues,
    validate_config,
    validate_operator_role_names,
    validate_references,
    validate_topology,
)
from tests.conftest import ACCOUNT_ID, make_config

KEY_ID = "1234abcd-12ab-34cd-56ef-1234567890ab"


@pytest.mark.parametrize(
    "arn, valid",
    [
        (f"arn:aws:kms:us-east-1:{ACCOUNT_ID}:key/{KEY_ID}", True),
        (f"arn:aws:kms:us-east-1:{ACCOUNT_ID}:key/mrk-1234abcd12ab34cd56ef1234567890ab", True),
        (f"arn:aws:kms:us-west-2:{ACCOUNT_ID}:key/{KEY_ID}", False),
        (f"arn:aws-us-gov:kms:us-east-1:{ACCOUNT_ID}:key/{KEY_ID}", False),
        (f"arn:aws:kms:us-east-1:{ACCOUNT_ID}:alias/my-key", False),
        ("not-an-arn", False),
    ],
)
def test_kms_key_arn(arn, valid):
    assert is_valid_kms_key_arn(arn, CloudPartition.STANDARD, "us-east-1")[0] is valid


def test_role_arn_partition():
    ok, _ = is_valid_role_arn(f"arn:aws:iam::{ACCOUNT_ID}:role/path/name", CloudPartition.STANDARD)
    assert ok
    ok, err = is_valid_role_arn(f"arn:aws:iam::{ACCOUNT_ID}:role/name", CloudPartition.REGULATED)
    assert not ok
    assert "aws-us-gov" in err


def test_malformed_supplied_key_is_invalid_reference():
    config = make_config(encryption={"cluster_key": {"mode": "customer_supplied", "key_ref": "my-key"}})

    with pytest.raises(InvalidReference) as exc:
        validate_config(config)

    assert exc.value.identifier == "my-key"
    assert exc.value.issues[0].remediation


def test_supplied_key_without_ref():
    config = make_config(encryption={"infrastructure_key": {"mode": "customer_supplied"}})
    issues = validate_references(config)

    assert issues[0].identifier == "encryption.infrastructure_key.key_ref"


def test_key_ref_with_created_mode_conflicts():
    config = make_config(
        encryption={
            "cluster_key": {
                "mode": "customer_created",
                "key_ref": f"arn:aws:kms:us-east-1:{ACCOUNT_ID}:key/{KEY_ID}",
            }
        }
    )
    issues = validate_references(config)

    assert issues[0].kind == IssueKind.TOPOLOGY_CONFLICT


def test_partition_region_mismatch():
    issues = validate_topology(make_config(partition="aws-us-gov", region="us-east-1"))
    assert issues[0].identifier == "us-east-1"

    issues = validate_topology(make_config(region="us-gov-west-1", partition="aws"))
    assert issues[0].kind == IssueKind.TOPOLOGY_CONFLICT


def test_govcloud_region_defaults_to_regulated_partition():
    assert validate_topology(make_config(region="us-gov-west-1")) == []


def test_unmanaged_oidc_needs_secret_and_issuer():
    issues = validate_topology(make_config(oidc={"mode": "unmanaged"}))

    assert {i.identifier for i in issues} == {"oidc.secret_ref", "oidc.issuer_url"}


def test_external_oidc_needs_endpoint():
    issues = validate_topology(make_config(oidc={"create": False}))

    assert issues[0].identifier == "oidc.endpoint_url"
    assert len(issues[0].remediation) == 2


def test_etcd_on_classic_with_created_key():
    config = make_config(
        cluster_variant="classic",
        encryption={"etcd_encryption": True, "cluster_key": {"mode": "customer_created"}},
    )

    with pytest.raises(TopologyConflict):
        validate_config(config)


def test_unknown_and_foreign_explicit_refs():
    arn = f"arn:aws:iam::{ACCOUNT_ID}:role/x"
    config = make_config(
        account_roles={"explicit_refs": {"control_plane": arn}},
        operator_roles={"explicit_refs": {"machine_api": arn}},
    )
    identifiers = {i.identifier for i in validate_topology(config)}

    assert identifiers == {
        "account_roles.explicit_refs.control_plane",
        "operator_roles.explicit_refs.machine_api",
    }


def test_registry_entries_match_partition():
    config = make_config(
        region="us-gov-west-1",
        policy_registry={"worker_policy": "arn:aws:iam::aws:policy/service-role/ROSAWorkerInstancePolicy"},
    )
    issues = validate_references(config)

    assert issues[0].kind == IssueKind.INVALID_REFERENCE


def test_raise_for_issues_uses_first_kind():
    issues = [
        PreflightIssue(kind=IssueKind.DUPLICATE_RESOURCE, identifier="a", message="m", remediation=["r"]),
        PreflightIssue(kind=IssueKind.POLICY_DRIFT, identifier="b", message="m", remediation=["r"]),
    ]

    with pytest.raises(DuplicateResource) as exc:
        raise_for_issues(issues)

    assert len(exc.value.issues) == 2
    assert exc.value.to_response().error == "duplicate_resource"
    raise_for_issues([])


@pytest.mark.parametrize("variant", ["classic", "hcp"])
def test_long_cluster_names_keep_operator_roles_distinct(variant):
    config = make_config(cluster_name="a" * 52, cluster_variant=variant)
    requests, _ = build_operator_role_requests(config, "oidc.example.com/abc")
    names = [r.role_name for r in requests]

    assert config.operator_roles.prefix == "a" * 32
    assert len(set(names)) == len(names)
    assert all(len(name) <= 64 for name in names)
    assert validate_operator_role_names(config) == []


def test_colliding_operator_role_names_conflict():
    config = make_config()
    config.operator_roles.prefix = "a" * 52

    issues = validate_operator_role_names(config)

    assert {i.kind for i in issues} == {IssueKind.TOPOLOGY_CONFLICT}
    kube_system = next(i for i in issues if i.identifier.endswith("-kube-system"))
    for key in ("kube_controller_manager", "node_pool_management", "kms_provider"):
        assert key in kube_system.message
    assert any("operator_roles.prefix" in r for r in kube_system.remediation)


def test_explicit_operators_are_not_named():
    config = make_config(
        operator_roles={
            "explicit_refs": {
                "ingress_operator": f"arn:aws:iam::{ACCOUNT_ID}:role/ingress",
                "image_registry": f"arn:aws:iam::{ACCOUNT_ID}:role/registry",
            }
        }
    )
    config.operator_roles.prefix = "a" * 52

    identifiers = [i.identifier for i in validate_operator_role_names(config)]

    assert not any(name.endswith("-openshift-i") for name in identifiers)
