import pytest

from api.models import IssueKind, Provenance
from api.services.policy_binder import build_account_role_requests
from api.services.role_resolver import (
    CreateIfAbsent,
    DiscoverExisting,
    ExplicitReference,
    RoleResolver,
    select_strategy,
)
from tests.conftest import ACCOUNT_ID, make_config

INSTALLER = "ManagedOpenShift-HCP-ROSA-Installer-Role"
INSTALLER_POLICY = "arn:aws:iam::aws:policy/service-role/ROSAInstallerPolicy"
OWNER = "demo"


def _installer_request(create: bool):
    config = make_config(account_roles={"create": create})
    requests, _ = build_account_role_requests(config)
    return requests[0]


@pytest.mark.parametrize(
    "explicit, create, expected",
    [
        ("arn:aws:iam::123456789012:role/mine", True, ExplicitReference),
        ("arn:aws:iam::123456789012:role/mine", False, ExplicitReference),
        (None, True, CreateIfAbsent),
        (None, False, DiscoverExisting),
    ],
)
def test_select_strategy(explicit, create, expected):
    assert isinstance(select_strategy(explicit, create), expected)


@pytest.mark.parametrize("create", [True, False])
def test_explicit_reference_wins(directory, create):
    arn = f"arn:aws:iam::{ACCOUNT_ID}:role/custom/my-installer"
    directory.add_role(INSTALLER, ["arn:aws:iam::aws:policy/Unrelated"])

    bindings, issues = RoleResolver(directory).resolve(
        [_installer_request(create)], {"installer": arn}, create
    )

    assert issues == []
    assert bindings[0].resolved_identifier == arn
    assert bindings[0].role_name == "my-installer"
    assert bindings[0].provenance == Provenance.EXPLICIT
    assert directory.role_lookups == []


def test_discovery_of_absent_role_names_it(directory):
    bindings, issues = RoleResolver(directory).resolve([_installer_request(False)], {}, False)

    assert bindings == []
    assert issues[0].kind == IssueKind.MISSING_PREREQUISITE
    assert issues[0].identifier == INSTALLER


def test_discovery_returns_live_arn(directory):
    existing = directory.add_role(INSTALLER, [INSTALLER_POLICY], path="/rosa/")

    bindings, issues = RoleResolver(directory).resolve([_installer_request(False)], {}, False)

    assert issues == []
    assert bindings[0].resolved_identifier == existing.arn
    assert bindings[0].provenance == Provenance.DISCOVERED
    assert not bindings[0].owned


def test_discovery_detects_drift(directory):
    directory.add_role(INSTALLER, [INSTALLER_POLICY, "arn:aws:iam::aws:policy/AdministratorAccess"])

    _, issues = RoleResolver(directory).resolve([_installer_request(False)], {}, False)

    assert issues[0].kind == IssueKind.POLICY_DRIFT
    assert "AdministratorAccess" in issues[0].message


def test_create_when_absent(directory):
    bindings, issues = RoleResolver(directory).resolve([_installer_request(True)], {}, True)

    assert issues == []
    binding = bindings[0]
    assert binding.provenance == Provenance.CREATED
    assert binding.policy_refs == [INSTALLER_POLICY]
    assert binding.resolved_identifier == f"arn:aws:iam::{ACCOUNT_ID}:role/{INSTALLER}"
    assert binding.trust_policy is not None


def test_create_with_drifted_existing_role(directory):
    directory.add_role(INSTALLER, ["arn:aws:iam::aws:policy/ReadOnlyAccess"], owner=OWNER)

    bindings, issues = RoleResolver(directory).resolve([_installer_request(True)], {}, True)

    assert bindings == []
    assert issues[0].kind == IssueKind.POLICY_DRIFT


def test_create_against_foreign_role_is_duplicate(directory):
    directory.add_role(INSTALLER, [INSTALLER_POLICY], owner="someone-else")

    _, issues = RoleResolver(directory).resolve([_installer_request(True)], {}, True)

    assert issues[0].kind == IssueKind.DUPLICATE_RESOURCE
    assert "someone-else" in issues[0].message


def test_reapplying_our_own_role_keeps_it_created(directory):
    directory.add_role(INSTALLER, [INSTALLER_POLICY], owner=OWNER)

    bindings, issues = RoleResolver(directory).resolve([_installer_request(True)], {}, True)

    assert issues == []
    assert bindings[0].provenance == Provenance.CREATED


def test_issues_from_every_role_are_collected(directory):
    config = make_config()
    requests, _ = build_account_role_requests(config)

    _, issues = RoleResolver(directory).resolve(requests, {}, False)

    assert len(issues) == 3
