"""Static role catalogs for both cluster variants."""

from dataclasses import dataclass
from typing import Optional

from api.models import AccountRoleType, ClusterVariant, TrustPrincipalType

EC2_SERVICE_PRINCIPAL = "ec2.amazonaws.com"
MAX_ROLE_NAME_LENGTH = 64


@dataclass(frozen=True)
class AccountRoleSpec:
    role_type: AccountRoleType
    suffix: str
    trust_type: TrustPrincipalType
    # Registry key for ACCOUNT trust, service principal for SERVICE trust
    trust_source: str
    policy_key: str
    managed_policy: Optional[str] = None


@dataclass(frozen=True)
class OperatorRoleSpec:
    key: str
    namespace: str
    name: str
    service_accounts: frozenset[str]
    managed_policy: Optional[str] = None

    @property
    def policy_key(self) -> str:
        return f"{self.key}_policy"

    @property
    def subjects(self) -> list[str]:
        return sorted(
            f"system:serviceaccount:{self.namespace}:{sa}" for sa in self.service_accounts
        )

    def role_name(self, prefix: str) -> str:
        return f"{prefix}-{self.namespace}-{self.name}"[:MAX_ROLE_NAME_LENGTH]


HCP_ACCOUNT_ROLES: tuple[AccountRoleSpec, ...] = (
    AccountRoleSpec(
        role_type=AccountRoleType.INSTALLER,
        suffix="HCP-ROSA-Installer-Role",
        trust_type=TrustPrincipalType.ACCOUNT,
        trust_source="installer_trust_principal",
        policy_key="installer_policy",
        managed_policy="ROSAInstallerPolicy",
    ),
    AccountRoleSpec(
        role_type=AccountRoleType.SUPPORT,
        suffix="HCP-ROSA-Support-Role",
        trust_type=TrustPrincipalType.ACCOUNT,
        trust_source="support_trust_principal",
        policy_key="support_policy",
        managed_policy="ROSASRESupportPolicy",
    ),
    AccountRoleSpec(
        role_type=AccountRoleType.WORKER,
        suffix="HCP-ROSA-Worker-Role",
        trust_type=TrustPrincipalType.SERVICE,
        trust_source=EC2_SERVICE_PRINCIPAL,
        policy_key="worker_policy",
        managed_policy="ROSAWorkerInstancePolicy",
    ),
)

CLASSIC_ACCOUNT_ROLES: tuple[AccountRoleSpec, ...] = (
    AccountRoleSpec(
        role_type=AccountRoleType.INSTALLER,
        suffix="Installer-Role",
        trust_type=TrustPrincipalType.ACCOUNT,
        trust_source="installer_trust_principal",
        policy_key="installer_policy",
    ),
    AccountRoleSpec(
        role_type=AccountRoleType.SUPPORT,
        suffix="Support-Role",
        trust_type=TrustPrincipalType.ACCOUNT,
        trust_source="support_trust_principal",
        policy_key="support_policy",
    ),
    AccountRoleSpec(
        role_type=AccountRoleType.WORKER,
        suffix="Worker-Role",
        trust_type=TrustPrincipalType.SERVICE,
        trust_source=EC2_SERVICE_PRINCIPAL,
        policy_key="worker_policy",
    ),
    AccountRoleSpec(
        role_type=AccountRoleType.CONTROL_PLANE,
        suffix="ControlPlane-Role",
        trust_type=TrustPrincipalType.SERVICE,
        trust_source=EC2_SERVICE_PRINCIPAL,
        policy_key="control_plane_policy",
    ),
)

# Operators shared by both variants
_INGRESS = OperatorRoleSpec(
    key="ingress_operator",
    namespace="openshift-ingress-operator",
    name="cloud-credentials",
    service_accounts=frozenset({"ingress-operator"}),
    managed_policy="ROSAIngressOperatorPolicy",
)
_IMAGE_REGISTRY = OperatorRoleSpec(
    key="image_registry",
    namespace="openshift-image-registry",
    name="installer-cloud-credentials",
    service_accounts=frozenset({"cluster-image-registry-operator", "registry"}),
    managed_policy="ROSAImageRegistryOperatorPolicy",
)
_EBS_CSI = OperatorRoleSpec(
    key="ebs_csi_driver",
    namespace="openshift-cluster-csi-drivers",
    name="ebs-cloud-credentials",
    service_accounts=frozenset(
        {"aws-ebs-csi-driver-operator", "aws-ebs-csi-driver-controller-sa"}
    ),
    managed_policy="ROSAAmazonEBSCSIDriverOperatorPolicy",
)
_CLOUD_NETWORK_CONFIG = OperatorRoleSpec(
    key="cloud_network_config",
    namespace="openshift-cloud-network-config-controller",
    name="cloud-credentials",
    service_accounts=frozenset({"cloud-network-config-controller"}),
    managed_policy="ROSACloudNetworkConfigOperatorPolicy",
)

KUBE_CONTROLLER_MANAGER = OperatorRoleSpec(
    key="kube_controller_manager",
    namespace="kube-system",
    name="kube-controller-manager",
    service_accounts=frozenset({"kube-controller-manager"}),
    managed_policy="ROSAKubeControllerPolicy",
)
NODE_POOL_MANAGEMENT = OperatorRoleSpec(
    key="node_pool_management",
    namespace="kube-system",
    name="capa-controller-manager",
    service_accounts=frozenset({"capa-controller-manager"}),
    managed_policy="ROSANodePoolManagementPolicy",
)
CONTROL_PLANE_OPERATOR = OperatorRoleSpec(
    key="control_plane_operator",
    namespace="kube-system",
    name="control-plane-operator",
    service_accounts=frozenset({"control-plane-operator"}),
    managed_policy="ROSAControlPlaneOperatorPolicy",
)
KMS_PROVIDER = OperatorRoleSpec(
    key="kms_provider",
    namespace="kube-system",
    name="kms-provider",
    service_accounts=frozenset({"kms-provider"}),
    managed_policy="ROSAKMSProviderPolicy",
)

HCP_OPERATOR_ROLES: tuple[OperatorRoleSpec, ...] = (
    _INGRESS,
    _IMAGE_REGISTRY,
    _EBS_CSI,
    _CLOUD_NETWORK_CONFIG,
    KUBE_CONTROLLER_MANAGER,
    NODE_POOL_MANAGEMENT,
    CONTROL_PLANE_OPERATOR,
    KMS_PROVIDER,
)

CLASSIC_OPERATOR_ROLES: tuple[OperatorRoleSpec, ...] = (
    _INGRESS,
    _IMAGE_REGISTRY,
    _EBS_CSI,
    _CLOUD_NETWORK_CONFIG,
    OperatorRoleSpec(
        key="machine_api",
        namespace="openshift-machine-api",
        name="aws-cloud-credentials",
        service_accounts=frozenset({"machine-api-controllers"}),
    ),
    OperatorRoleSpec(
        key="cloud_credential_operator",
        namespace="openshift-cloud-credential-operator",
        name="cloud-credential-operator-iam-ro-creds",
        service_accounts=frozenset({"cloud-credential-operator"}),
    ),
)


def account_role_catalog(variant: ClusterVariant) -> tuple[AccountRoleSpec, ...]:
    if variant == ClusterVariant.HOSTED_CONTROL_PLANE:
        return HCP_ACCOUNT_ROLES
    return CLASSIC_ACCOUNT_ROLES


def operator_role_catalog(variant: ClusterVariant) -> tuple[OperatorRoleSpec, ...]:
    if variant == ClusterVariant.HOSTED_CONTROL_PLANE:
        return HCP_OPERATOR_ROLES
    return CLASSIC_OPERATOR_ROLES


def account_role_name(prefix: str, spec: AccountRoleSpec) -> str:
    return f"{prefix}-{spec.suffix}"[:MAX_ROLE_NAME_LENGTH]


def managed_policy_arn(partition: str, policy_name: str) -> str:
    return f"arn:{partition}:iam::aws:policy/service-role/{policy_name}"


def lookup_policy(
    registry: dict[str, str],
    key: str,
    partition: str,
    managed_policy: Optional[str],
) -> Optional[str]:
    """Registry entry wins; managed policy is the fallback. None when neither exists."""
    if key in registry:
        return registry[key]
    if managed_policy:
        return managed_policy_arn(partition, managed_policy)
    return None
