from typing import Optional

import pytest

from api.config_resolver import resolve_identity_config
from api.models import IdentityConfigInput
from api.services.iam_discovery import ExistingOidcProvider, ExistingPrincipal
from api.services.policy_binder import OWNER_TAG

ACCOUNT_ID = "123456789012"
OTHER_ACCOUNT_ID = "710019948333"

GOV_REGISTRY = {
    "installer_trust_principal": f"arn:aws-us-gov:iam::{OTHER_ACCOUNT_ID}:role/RH-Managed-OpenShift-Installer",
    "support_trust_principal": f"arn:aws-us-gov:iam::{OTHER_ACCOUNT_ID}:role/RH-Technical-Support-Access",
}

COMMERCIAL_REGISTRY = {
    "installer_trust_principal": f"arn:aws:iam::{OTHER_ACCOUNT_ID}:role/RH-Managed-OpenShift-Installer",
    "support_trust_principal": f"arn:aws:iam::{OTHER_ACCOUNT_ID}:role/RH-Technical-Support-Access",
}

CLASSIC_REGISTRY = {
    **COMMERCIAL_REGISTRY,
    "installer_policy": f"arn:aws:iam::{ACCOUNT_ID}:policy/ManagedOpenShift-Installer-Role-Policy",
    "support_policy": f"arn:aws:iam::{ACCOUNT_ID}:policy/ManagedOpenShift-Support-Role-Policy",
    "worker_policy": f"arn:aws:iam::{ACCOUNT_ID}:policy/ManagedOpenShift-Worker-Role-Policy",
    "control_plane_policy": f"arn:aws:iam::{ACCOUNT_ID}:policy/ManagedOpenShift-ControlPlane-Role-Policy",
    "machine_api_policy": f"arn:aws:iam::{ACCOUNT_ID}:policy/ManagedOpenShift-openshift-machine-api",
    "cloud_credential_operator_policy": f"arn:aws:iam::{ACCOUNT_ID}:policy/ManagedOpenShift-cloud-credential",
    "ingress_operator_policy": f"arn:aws:iam::{ACCOUNT_ID}:policy/ManagedOpenShift-openshift-ingress",
    "image_registry_policy": f"arn:aws:iam::{ACCOUNT_ID}:policy/ManagedOpenShift-image-registry",
    "ebs_csi_driver_policy": f"arn:aws:iam::{ACCOUNT_ID}:policy/ManagedOpenShift-ebs-csi",
    "cloud_network_config_policy": f"arn:aws:iam::{ACCOUNT_ID}:policy/ManagedOpenShift-cloud-network",
}

EXISTING_ENDPOINT = "https://oidc.os1.devshift.org/2bd3mi5ad1ja0sf2nt1vs2tqj6vbmkcp"


class FakeDirectory:
    """In-memory principal directory."""

    def __init__(self):
        self.roles: dict[str, ExistingPrincipal] = {}
        self.providers: dict[str, ExistingOidcProvider] = {}
        self.role_lookups: list[str] = []

    def add_role(
        self,
        role_name: str,
        policies: list[str],
        owner: Optional[str] = None,
        partition: str = "aws",
        path: str = "/",
    ) -> ExistingPrincipal:
        tags = {OWNER_TAG: owner} if owner else {}
        principal = ExistingPrincipal(
            arn=f"arn:{partition}:iam::{ACCOUNT_ID}:role{path}{role_name}",
            role_name=role_name,
            attached_policy_arns=frozenset(policies),
            tags=tags,
        )
        self.roles[role_name] = principal
        return principal

    def add_provider(self, arn: str, url: str, thumbprint: str = "9e99a48a9960b14926bb7f3b02e22da2b0ab7280"):
        self.providers[arn] = ExistingOidcProvider(arn=arn, url=url, thumbprints=(thumbprint,))

    def get_role(self, role_name: str) -> Optional[ExistingPrincipal]:
        self.role_lookups.append(role_name)
        return self.roles.get(role_name)

    def get_oidc_provider(self, provider_arn: str) -> Optional[ExistingOidcProvider]:
        return self.providers.get(provider_arn)


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


def make_input(**overrides) -> IdentityConfigInput:
    data = {
        "cluster_name": "demo",
        "account_id": ACCOUNT_ID,
        "region": "us-east-1",
        "policy_registry": dict(COMMERCIAL_REGISTRY),
    }
    data.update(overrides)
    return IdentityConfigInput(**data)


def make_config(**overrides):
    return resolve_identity_config(make_input(**overrides))


@pytest.fixture
def hcp_config():
    return make_config(account_roles={"create": True, "scope": "cluster_scoped"})
