from typing import Optional

from api.models import (
    AccountRolesInput,
    AccountRolesResolved,
    CloudPartition,
    ClusterVariant,
    IdentityConfigInput,
    IdentityConfigResolved,
    OperatorRolesInput,
    OperatorRolesResolved,
    RoleScope,
    TopologyPreset,
)

DEFAULT_SHARED_ACCOUNT_ROLE_PREFIX = "ManagedOpenShift"
MAX_DEFAULT_PREFIX_LENGTH = 32

PRESETS: dict[TopologyPreset, tuple[CloudPartition, ClusterVariant]] = {
    TopologyPreset.COMMERCIAL_CLASSIC: (CloudPartition.STANDARD, ClusterVariant.CLASSIC),
    TopologyPreset.COMMERCIAL_HCP: (CloudPartition.STANDARD, ClusterVariant.HOSTED_CONTROL_PLANE),
    TopologyPreset.GOVCLOUD_CLASSIC: (CloudPartition.REGULATED, ClusterVariant.CLASSIC),
    TopologyPreset.GOVCLOUD_HCP: (CloudPartition.REGULATED, ClusterVariant.HOSTED_CONTROL_PLANE),
}


def partition_for_region(region: str) -> CloudPartition:
    """Derive the partition from the region name."""
    if region.startswith("us-gov-"):
        return CloudPartition.REGULATED
    return CloudPartition.STANDARD


def resolve_topology(
    preset: Optional[TopologyPreset],
    partition: Optional[CloudPartition],
    variant: Optional[ClusterVariant],
    region: str,
) -> tuple[CloudPartition, ClusterVariant]:
    """Explicit flags win over the preset; the region decides the partition otherwise."""
    preset_partition, preset_variant = PRESETS[preset] if preset else (None, None)

    resolved_partition = partition or preset_partition or partition_for_region(region)
    resolved_variant = variant or preset_variant or ClusterVariant.HOSTED_CONTROL_PLANE

    return resolved_partition, resolved_variant


def default_prefix(cluster_name: str) -> str:
    """Cluster-derived prefix, capped at the length allowed for an explicit prefix."""
    return cluster_name[:MAX_DEFAULT_PREFIX_LENGTH].rstrip("-")


def resolve_account_roles(
    input_config: AccountRolesInput,
    cluster_name: str,
) -> AccountRolesResolved:
    """Shared roles default to the account-wide prefix, cluster-scoped ones to the cluster name.

    Roles are always owned by the cluster that creates them, shared ones included.
    """
    if input_config.prefix:
        prefix = input_config.prefix
    elif input_config.scope == RoleScope.SHARED:
        prefix = DEFAULT_SHARED_ACCOUNT_ROLE_PREFIX
    else:
        prefix = default_prefix(cluster_name)

    return AccountRolesResolved(
        scope=input_config.scope,
        create=input_config.create,
        prefix=prefix,
        path=input_config.path,
        explicit_refs=dict(input_config.explicit_refs),
        permissions_boundary=input_config.permissions_boundary,
        owner_id=cluster_name,
    )


def resolve_operator_roles(
    input_config: OperatorRolesInput,
    cluster_name: str,
) -> OperatorRolesResolved:
    return OperatorRolesResolved(
        create=input_config.create,
        prefix=input_config.prefix or default_prefix(cluster_name),
        path=input_config.path,
        explicit_refs=dict(input_config.explicit_refs),
        permissions_boundary=input_config.permissions_boundary,
        owner_id=cluster_name,
    )


def resolve_identity_config(input_config: IdentityConfigInput) -> IdentityConfigResolved:
    """Resolve input configuration with all defaults filled."""
    partition, variant = resolve_topology(
        input_config.preset,
        input_config.partition,
        input_config.cluster_variant,
        input_config.region,
    )

    tags: dict[str, str] = {
        "Cluster": input_config.cluster_name,
        "ManagedBy": "pulumi",
    }
    tags.update(input_config.tags)

    return IdentityConfigResolved(
        cluster_name=input_config.cluster_name,
        account_id=input_config.account_id,
        region=input_config.region,
        partition=partition,
        cluster_variant=variant,
        account_roles=resolve_account_roles(input_config.account_roles, input_config.cluster_name),
        operator_roles=resolve_operator_roles(input_config.operator_roles, input_config.cluster_name),
        oidc=input_config.oidc.model_copy(),
        encryption=input_config.encryption.model_copy(deep=True),
        policy_registry=dict(input_config.policy_registry),
        tags=tags,
    )
