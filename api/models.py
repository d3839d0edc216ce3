import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class CloudPartition(str, Enum):
    """AWS partition the deployment account lives in."""

    STANDARD = "aws"
    REGULATED = "aws-us-gov"


class ClusterVariant(str, Enum):
    """Managed cluster topology."""

    CLASSIC = "classic"
    HOSTED_CONTROL_PLANE = "hcp"


class TopologyPreset(str, Enum):
    """Named partition/variant combinations used by environment directories."""

    COMMERCIAL_CLASSIC = "commercial-classic"
    COMMERCIAL_HCP = "commercial-hcp"
    GOVCLOUD_CLASSIC = "govcloud-classic"
    GOVCLOUD_HCP = "govcloud-hcp"


class RoleScope(str, Enum):
    """Lifecycle scope of account roles."""

    SHARED = "shared"
    CLUSTER_SCOPED = "cluster_scoped"


class Provenance(str, Enum):
    """How a principal or key ended up in the plan."""

    CREATED = "created"
    DISCOVERED = "discovered"
    EXPLICIT = "explicit"


class TrustPrincipalType(str, Enum):
    SERVICE = "service"
    FEDERATED = "federated"
    ACCOUNT = "account"


class AccountRoleType(str, Enum):
    INSTALLER = "installer"
    SUPPORT = "support"
    WORKER = "worker"
    CONTROL_PLANE = "control_plane"


class EntityKind(str, Enum):
    ACCOUNT_ROLE = "account_role"
    OPERATOR_ROLE = "operator_role"
    OIDC_CONFIG = "oidc_config"
    OIDC_PROVIDER = "oidc_provider"
    KMS_KEY = "kms_key"


class OidcMode(str, Enum):
    MANAGED = "managed"
    UNMANAGED = "unmanaged"


class OidcState(str, Enum):
    """Lifecycle of the cluster's OIDC identity."""

    UNCONFIGURED = "unconfigured"
    MANAGED_READY = "managed_ready"
    UNMANAGED_PENDING = "unmanaged_pending"
    UNMANAGED_READY = "unmanaged_ready"
    EXTERNAL_REFERENCED = "external_referenced"


class KeyDomainId(str, Enum):
    CLUSTER = "cluster"
    INFRASTRUCTURE = "infrastructure"


class KeyMode(str, Enum):
    PLATFORM_DEFAULT = "platform_default"
    CUSTOMER_CREATED = "customer_created"
    CUSTOMER_SUPPLIED = "customer_supplied"


class KeyPrincipalBinding(str, Enum):
    """How cluster-domain key statements identify roles."""

    NAME_PATTERN = "name_pattern"
    EXACT = "exact"


class IssueKind(str, Enum):
    MISSING_PREREQUISITE = "missing_prerequisite"
    POLICY_DRIFT = "policy_drift"
    DUPLICATE_RESOURCE = "duplicate_resource"
    INVALID_REFERENCE = "invalid_reference"
    TOPOLOGY_CONFLICT = "topology_conflict"


# =============================================================================
# Input
# =============================================================================


class AccountRolesInput(BaseModel):
    """Account role settings - discovery of shared roles is the default."""

    scope: RoleScope = Field(default=RoleScope.SHARED)
    create: bool = Field(default=False, description="Create missing account roles")
    prefix: Optional[str] = Field(
        default=None,
        description="Role name prefix (defaults depend on scope)",
        pattern=r"^[\w+=,.@-]{1,32}$",
    )
    path: str = Field(default="/", pattern=r"^/([\w+=,.@-]+/)*$")
    explicit_refs: dict[AccountRoleType, str] = Field(
        default_factory=dict,
        description="Role ARNs that bypass discovery and creation",
    )
    permissions_boundary: Optional[str] = None


class OperatorRolesInput(BaseModel):
    """Operator (cluster-scoped) role settings."""

    create: bool = Field(default=True)
    prefix: Optional[str] = Field(default=None, pattern=r"^[\w+=,.@-]{1,32}$")
    path: str = Field(default="/", pattern=r"^/([\w+=,.@-]+/)*$")
    explicit_refs: dict[str, str] = Field(
        default_factory=dict,
        description="Role ARNs keyed by operator catalog key",
    )
    permissions_boundary: Optional[str] = None


class OidcInput(BaseModel):
    """OIDC identity settings."""

    create: bool = Field(default=True)
    mode: OidcMode = Field(default=OidcMode.MANAGED)
    endpoint_url: Optional[str] = Field(
        default=None,
        description="Existing issuer URL (required when create is false)",
    )
    config_id: Optional[str] = Field(default=None)
    secret_ref: Optional[str] = Field(
        default=None,
        description="Secrets Manager ARN holding the issuer private key (unmanaged)",
    )
    issuer_url: Optional[str] = Field(
        default=None,
        description="Customer-hosted issuer URL (unmanaged)",
    )

    @field_validator("endpoint_url", "issuer_url")
    @classmethod
    def validate_https(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith("https://"):
            raise ValueError("OIDC URLs must use https://")
        return v.rstrip("/") if v else v


class KeyDomainInput(BaseModel):
    mode: KeyMode = Field(default=KeyMode.PLATFORM_DEFAULT)
    key_ref: Optional[str] = Field(default=None, description="KMS key ARN (customer_supplied)")


class EncryptionInput(BaseModel):
    """Encryption settings for both key domains."""

    cluster_key: KeyDomainInput = Field(default_factory=KeyDomainInput)
    infrastructure_key: KeyDomainInput = Field(default_factory=KeyDomainInput)
    etcd_encryption: bool = Field(default=False)
    principal_binding: KeyPrincipalBinding = Field(default=KeyPrincipalBinding.NAME_PATTERN)


class IdentityConfigInput(BaseModel):
    """Everything the engine needs to plan a cluster's identities and keys."""

    cluster_name: str = Field(..., pattern=r"^[a-z][-a-z0-9]{0,53}$")
    account_id: str = Field(..., pattern=r"^\d{12}$")
    region: str = Field(default="us-east-1", pattern=r"^[a-z]{2}(-gov)?-[a-z]+-\d$")
    preset: Optional[TopologyPreset] = None
    cluster_variant: Optional[ClusterVariant] = None
    partition: Optional[CloudPartition] = None

    account_roles: AccountRolesInput = Field(default_factory=AccountRolesInput)
    operator_roles: OperatorRolesInput = Field(default_factory=OperatorRolesInput)
    oidc: OidcInput = Field(default_factory=OidcInput)
    encryption: EncryptionInput = Field(default_factory=EncryptionInput)

    policy_registry: dict[str, str] = Field(
        default_factory=dict,
        description="Externally supplied policy and trust principal references",
    )
    tags: dict[str, str] = Field(default_factory=dict)


class AccountRolesResolved(BaseModel):
    scope: RoleScope
    create: bool
    prefix: str
    path: str
    explicit_refs: dict[AccountRoleType, str]
    permissions_boundary: Optional[str]
    owner_id: str


class OperatorRolesResolved(BaseModel):
    create: bool
    prefix: str
    path: str
    explicit_refs: dict[str, str]
    permissions_boundary: Optional[str]
    owner_id: str


class IdentityConfigResolved(BaseModel):
    """Fully resolved configuration - every default filled."""

    cluster_name: str
    account_id: str
    region: str
    partition: CloudPartition
    cluster_variant: ClusterVariant

    account_roles: AccountRolesResolved
    operator_roles: OperatorRolesResolved
    oidc: OidcInput
    encryption: EncryptionInput

    policy_registry: dict[str, str]
    tags: dict[str, str]

    @property
    def hosted_control_plane(self) -> bool:
        return self.cluster_variant == ClusterVariant.HOSTED_CONTROL_PLANE

    def role_arn(self, path: str, role_name: str) -> str:
        return f"arn:{self.partition.value}:iam::{self.account_id}:role{path}{role_name}"


# =============================================================================
# Plan
# =============================================================================


class TrustPrincipal(BaseModel):
    type: TrustPrincipalType
    value: Optional[str] = Field(
        default=None,
        description="Principal ARN or service name; None until the OIDC endpoint exists",
    )


class RoleBinding(BaseModel):
    """Final decision for one role."""

    kind: EntityKind
    logical_name: str
    role_name: str
    resolved_identifier: str
    scope: RoleScope
    trust_principal: TrustPrincipal
    policy_refs: list[str] = Field(default_factory=list)
    trust_policy: Optional[dict[str, Any]] = None
    path: str = "/"
    permissions_boundary: Optional[str] = None
    tags: dict[str, str] = Field(default_factory=dict)
    provenance: Provenance

    @property
    def owned(self) -> bool:
        return self.provenance == Provenance.CREATED


class OIDCIdentity(BaseModel):
    """The cluster's OIDC identity; endpoint is unknown until creation when created."""

    mode: Optional[OidcMode] = None
    state: OidcState = OidcState.UNCONFIGURED
    create: bool
    endpoint_url: Optional[str] = None
    thumbprint: Optional[str] = None
    config_id: Optional[str] = None
    provider_ref: Optional[str] = None
    secret_ref: Optional[str] = None
    bootstrap_role_ref: Optional[str] = None

    @property
    def host(self) -> Optional[str]:
        if not self.endpoint_url:
            return None
        return self.endpoint_url.replace("https://", "")


class EncryptionKeyDomain(BaseModel):
    domain_id: KeyDomainId
    mode: KeyMode
    key_ref: Optional[str] = None
    alias: Optional[str] = None
    principal_binding: KeyPrincipalBinding = KeyPrincipalBinding.NAME_PATTERN
    statements: list[dict[str, Any]] = Field(default_factory=list)

    def policy_document(self) -> Optional[dict[str, Any]]:
        if not self.statements:
            return None
        return {"Version": "2012-10-17", "Statement": self.statements}

    def policy_json(self) -> Optional[str]:
        document = self.policy_document()
        if document is None:
            return None
        return json.dumps(document, sort_keys=True)


class EntityRef(BaseModel):
    """A single entity in the structured summary."""

    kind: EntityKind
    logical_name: str
    identifier: Optional[str] = None
    provenance: Provenance
    scope: Optional[RoleScope] = None


class ResolvedRole(BaseModel):
    identifier: str
    provenance: Provenance


class ProvisioningSummary(BaseModel):
    cluster_name: str
    created: list[EntityRef]
    discovered: list[EntityRef]
    supplied: list[EntityRef]


class ProvisioningPlan(BaseModel):
    """Output of preflight; the apply phase only materialises what is here."""

    cluster_name: str
    topology: IdentityConfigResolved
    oidc: OIDCIdentity
    account_roles: list[RoleBinding]
    operator_roles: list[RoleBinding]
    key_domains: list[EncryptionKeyDomain]
    propagation_delay_seconds: int

    def role_map(self) -> dict[str, ResolvedRole]:
        """Logical role name to final identifier, sorted for stable output."""
        roles = {
            binding.logical_name: ResolvedRole(
                identifier=binding.resolved_identifier,
                provenance=binding.provenance,
            )
            for binding in self.account_roles + self.operator_roles
        }
        return dict(sorted(roles.items()))

    def key_domain(self, domain_id: KeyDomainId) -> EncryptionKeyDomain:
        for domain in self.key_domains:
            if domain.domain_id == domain_id:
                return domain
        raise KeyError(domain_id.value)

    def entities(self) -> list[EntityRef]:
        """All entities in creation order."""
        entities: list[EntityRef] = []

        if self.oidc.create:
            entities.append(
                EntityRef(
                    kind=EntityKind.OIDC_CONFIG,
                    logical_name="oidc-config",
                    identifier=self.oidc.config_id,
                    provenance=Provenance.CREATED,
                )
            )
        entities.append(
            EntityRef(
                kind=EntityKind.OIDC_PROVIDER,
                logical_name="oidc-provider",
                identifier=self.oidc.provider_ref,
                provenance=Provenance.CREATED if self.oidc.create else Provenance.DISCOVERED,
            )
        )

        for binding in self.account_roles + self.operator_roles:
            entities.append(
                EntityRef(
                    kind=binding.kind,
                    logical_name=binding.logical_name,
                    identifier=binding.resolved_identifier,
                    provenance=binding.provenance,
                    scope=binding.scope,
                )
            )

        for domain in self.key_domains:
            if domain.mode == KeyMode.PLATFORM_DEFAULT:
                continue
            entities.append(
                EntityRef(
                    kind=EntityKind.KMS_KEY,
                    logical_name=f"{domain.domain_id.value}-key",
                    identifier=domain.key_ref,
                    provenance=(
                        Provenance.CREATED
                        if domain.mode == KeyMode.CUSTOMER_CREATED
                        else Provenance.EXPLICIT
                    ),
                )
            )

        return entities

    def summary(self) -> ProvisioningSummary:
        entities = self.entities()
        return ProvisioningSummary(
            cluster_name=self.cluster_name,
            created=[e for e in entities if e.provenance == Provenance.CREATED],
            discovered=[e for e in entities if e.provenance == Provenance.DISCOVERED],
            supplied=[e for e in entities if e.provenance == Provenance.EXPLICIT],
        )

    def destroy_order(self, include_shared: bool = False) -> list[EntityRef]:
        """Owned entities in reverse creation order.

        Discovered and explicit entities are never included. Created shared
        roles outlive the cluster unless include_shared is set.
        """
        owned = [
            e
            for e in self.entities()
            if e.provenance == Provenance.CREATED
            and (include_shared or e.scope != RoleScope.SHARED)
        ]
        return list(reversed(owned))


# =============================================================================
# API
# =============================================================================


class PreflightIssue(BaseModel):
    """Single preflight finding. Always names the identifier and a way out."""

    kind: IssueKind
    identifier: str
    message: str
    remediation: list[str] = Field(min_length=1)


class PreflightErrorResponse(BaseModel):
    error: str
    message: str
    issues: list[PreflightIssue]


class PlanResponse(BaseModel):
    cluster_name: str
    role_map: dict[str, ResolvedRole]
    oidc_endpoint_url: Optional[str]
    oidc_config_id: Optional[str]
    oidc_state: OidcState
    cluster_key_ref: Optional[str]
    infrastructure_key_ref: Optional[str]
    summary: ProvisioningSummary
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_plan(cls, plan: ProvisioningPlan) -> "PlanResponse":
        return cls(
            cluster_name=plan.cluster_name,
            role_map=plan.role_map(),
            oidc_endpoint_url=plan.oidc.endpoint_url,
            oidc_config_id=plan.oidc.config_id,
            oidc_state=plan.oidc.state,
            cluster_key_ref=plan.key_domain(KeyDomainId.CLUSTER).key_ref,
            infrastructure_key_ref=plan.key_domain(KeyDomainId.INFRASTRUCTURE).key_ref,
            summary=plan.summary(),
        )


class DestroySetResponse(BaseModel):
    cluster_name: str
    entities: list[EntityRef]
    total: int
