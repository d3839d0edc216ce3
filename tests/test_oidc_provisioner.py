import pytest

from api.models import IssueKind, OidcMode, OidcState, Provenance, RoleBinding
from api.services.oidc_provisioner import (
    OidcEvent,
    OidcProvisioner,
    advance,
    bind_bootstrap_role,
)
from tests.conftest import ACCOUNT_ID, EXISTING_ENDPOINT, make_config

PROVIDER_ARN = f"arn:aws:iam::{ACCOUNT_ID}:oidc-provider/{EXISTING_ENDPOINT.replace('https://', '')}"
SECRET_ARN = f"arn:aws:secretsmanager:us-east-1:{ACCOUNT_ID}:secret:demo-oidc-key-AbCdEf"


def _installer(provenance: Provenance) -> RoleBinding:
    return RoleBinding(
        kind="account_role",
        logical_name="installer",
        role_name="ManagedOpenShift-HCP-ROSA-Installer-Role",
        resolved_identifier=f"arn:aws:iam::{ACCOUNT_ID}:role/ManagedOpenShift-HCP-ROSA-Installer-Role",
        scope="shared",
        trust_principal={"type": "account"},
        provenance=provenance,
    )


def test_transitions():
    assert advance(OidcState.UNCONFIGURED, OidcEvent.CREATE_MANAGED) == OidcState.MANAGED_READY
    pending = advance(OidcState.UNCONFIGURED, OidcEvent.REGISTER_UNMANAGED)
    assert pending == OidcState.UNMANAGED_PENDING
    assert advance(pending, OidcEvent.PROVIDER_CREATED) == OidcState.UNMANAGED_READY


def test_invalid_transition():
    with pytest.raises(ValueError):
        advance(OidcState.MANAGED_READY, OidcEvent.PROVIDER_CREATED)


def test_managed_creation_has_no_endpoint_yet(directory):
    identity, issues = OidcProvisioner(directory).plan(make_config())

    assert issues == []
    assert identity.create
    assert identity.state == OidcState.MANAGED_READY
    assert identity.endpoint_url is None
    assert identity.host is None


def test_unmanaged_uses_customer_issuer(directory):
    config = make_config(
        oidc={
            "mode": "unmanaged",
            "secret_ref": SECRET_ARN,
            "issuer_url": "https://issuer.example.com/demo/",
        }
    )
    identity, issues = OidcProvisioner(directory).plan(config)

    assert issues == []
    assert identity.state == OidcState.UNMANAGED_PENDING
    assert identity.endpoint_url == "https://issuer.example.com/demo"
    assert identity.host == "issuer.example.com/demo"


def test_external_endpoint_must_exist(directory):
    config = make_config(oidc={"create": False, "endpoint_url": EXISTING_ENDPOINT})
    identity, issues = OidcProvisioner(directory).plan(config)

    assert issues[0].kind == IssueKind.MISSING_PREREQUISITE
    assert issues[0].identifier == PROVIDER_ARN
    assert identity.state == OidcState.UNCONFIGURED


def test_external_endpoint_reads_thumbprint(directory):
    directory.add_provider(PROVIDER_ARN, EXISTING_ENDPOINT, thumbprint="abc123")
    config = make_config(
        oidc={"create": False, "endpoint_url": EXISTING_ENDPOINT, "config_id": "2bd3mi5ad1"}
    )
    identity, issues = OidcProvisioner(directory).plan(config)

    assert issues == []
    assert identity.state == OidcState.EXTERNAL_REFERENCED
    assert identity.thumbprint == "abc123"
    assert identity.provider_ref == PROVIDER_ARN
    assert identity.config_id == "2bd3mi5ad1"


def test_bootstrap_role_must_preexist(directory):
    config = make_config(
        oidc={"mode": "unmanaged", "secret_ref": SECRET_ARN, "issuer_url": "https://issuer.example.com"}
    )
    identity, _ = OidcProvisioner(directory).plan(config)

    _, issues = bind_bootstrap_role(identity, _installer(Provenance.CREATED))
    assert issues[0].kind == IssueKind.TOPOLOGY_CONFLICT

    bound, issues = bind_bootstrap_role(identity, _installer(Provenance.DISCOVERED))
    assert issues == []
    assert bound.bootstrap_role_ref.endswith("ManagedOpenShift-HCP-ROSA-Installer-Role")


def test_managed_identity_ignores_bootstrap(directory):
    identity, _ = OidcProvisioner(directory).plan(make_config())

    bound, issues = bind_bootstrap_role(identity, None)
    assert issues == []
    assert bound.mode == OidcMode.MANAGED
    assert bound.bootstrap_role_ref is None
