import pulumi

from api.config_resolver import resolve_identity_config
from api.models import KeyDomainId
from api.services.cluster_manager import cluster_manager_url
from api.services.iam_discovery import IamDiscovery
from api.services.preflight import PreflightService
from api.settings import get_settings
from api.validation import ProvisioningError
from infra.components.iam import AccountRoles, OperatorRoles
from infra.components.kms import EncryptionKey
from infra.components.oidc import ClusterOidcIdentity
from infra.components.propagation import PropagationDelay
from infra.config import load_identity_config
from infra.providers import create_identity_aws_provider

settings = get_settings()
config = load_identity_config()
resolved = resolve_identity_config(config.identity)
name = resolved.cluster_name


# =============================================================================
# Preflight - read-only, raises before any resource is registered
# =============================================================================

discovery = IamDiscovery.from_settings(settings, resolved.region)
try:
    plan = PreflightService(discovery, config.propagation_delay_seconds).plan(resolved)
except ProvisioningError as e:
    for issue in e.issues:
        pulumi.log.error(
            f"[{issue.kind.value}] {issue.identifier}: {issue.message} "
            f"(remediation: {' | '.join(issue.remediation)})"
        )
    raise

aws_provider = create_identity_aws_provider(config, resolved)


# =============================================================================
# OIDC -> account roles -> operator roles -> keys -> propagation delay
# =============================================================================

token = config.cluster_manager_token
if token is None and settings.cluster_manager_token:
    token = pulumi.Output.secret(settings.cluster_manager_token)

oidc = ClusterOidcIdentity(
    name=name,
    identity=plan.oidc,
    cluster_manager_url=config.cluster_manager_url or cluster_manager_url(settings, resolved.partition),
    cluster_manager_token=token,
    provider=aws_provider,
    tags=resolved.tags,
)

account_roles = AccountRoles(
    name=f"{name}-account",
    bindings=plan.account_roles,
    provider=aws_provider,
    depends_on=[oidc],
)

operator_roles = OperatorRoles(
    name=f"{name}-operator",
    bindings=plan.operator_roles,
    cluster_variant=resolved.cluster_variant,
    partition=resolved.partition.value,
    account_id=resolved.account_id,
    oidc_host=oidc.host,
    provider=aws_provider,
    depends_on=[oidc, account_roles],
)

keys = {
    domain.domain_id: EncryptionKey(
        name=f"{name}-{domain.domain_id.value}",
        domain=domain,
        cluster_name=name,
        provider=aws_provider,
        tags=resolved.tags,
        depends_on=[account_roles, operator_roles],
    )
    for domain in plan.key_domains
}

delay = PropagationDelay(
    name=name,
    seconds=plan.propagation_delay_seconds,
    depends_on=[
        *account_roles.attachments,
        *operator_roles.attachments,
        *keys.values(),
    ],
)


# =============================================================================
# Exports
# =============================================================================

role_arns = {**account_roles.arns, **operator_roles.arns}

pulumi.export(
    "role_map",
    {
        logical_name: {
            "identifier": delay.gate(role_arns[logical_name]),
            "provenance": role.provenance.value,
        }
        for logical_name, role in plan.role_map().items()
    },
)

pulumi.export("oidc_endpoint_url", oidc.endpoint_url)
pulumi.export("oidc_config_id", oidc.config_id)
pulumi.export("oidc_provider_arn", oidc.provider_arn)
pulumi.export("oidc_state", oidc.state)

pulumi.export("cluster_key_ref", keys[KeyDomainId.CLUSTER].key_ref)
pulumi.export("infrastructure_key_ref", keys[KeyDomainId.INFRASTRUCTURE].key_ref)

pulumi.export("summary", plan.summary().model_dump(mode="json"))
pulumi.export(
    "destroy_order",
    [entity.model_dump(mode="json") for entity in plan.destroy_order()],
)
