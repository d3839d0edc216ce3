"""Trust documents for account and operator roles."""

from dataclasses import dataclass, field
from typing import Any, Optional

from api.catalog import (
    AccountRoleSpec,
    OperatorRoleSpec,
    account_role_catalog,
    account_role_name,
    lookup_policy,
    operator_role_catalog,
)
from api.models import (
    EntityKind,
    IdentityConfigResolved,
    IssueKind,
    PreflightIssue,
    RoleScope,
    TrustPrincipal,
    TrustPrincipalType,
)

POLICY_VERSION = "2012-10-17"
ASSUME_ROLE = "sts:AssumeRole"
ASSUME_ROLE_WITH_WEB_IDENTITY = "sts:AssumeRoleWithWebIdentity"

OWNER_TAG = "cluster-identity/owner"
SCOPE_TAG = "cluster-identity/scope"
ROLE_TYPE_TAG = "cluster-identity/role-type"


@dataclass(frozen=True)
class RoleRequest:
    """Everything needed to discover or create one role."""

    kind: EntityKind
    logical_name: str
    role_name: str
    identifier: str
    scope: RoleScope
    owner_id: str
    trust_principal: TrustPrincipal
    expected_policies: tuple[str, ...]
    trust_policy: Optional[dict[str, Any]] = None
    path: str = "/"
    permissions_boundary: Optional[str] = None
    tags: dict[str, str] = field(default_factory=dict)


def statement_id(*parts: str) -> str:
    """Stable alphanumeric Sid, e.g. ("trust", "ingress_operator") -> TrustIngressOperator."""
    words = [w for p in parts for w in p.replace("-", "_").split("_") if w]
    return "".join(w[:1].upper() + w[1:] for w in words)


def oidc_provider_arn(partition: str, account_id: str, oidc_host: str) -> str:
    return f"arn:{partition}:iam::{account_id}:oidc-provider/{oidc_host}"


def subject_condition(oidc_host: str, subjects: list[str]) -> dict[str, Any]:
    """StringEquals on <host>:sub; a single subject is emitted as a plain string."""
    ordered = sorted(subjects)
    value: Any = ordered[0] if len(ordered) == 1 else ordered
    return {"StringEquals": {f"{oidc_host}:sub": value}}


def build_operator_trust_policy(
    spec: OperatorRoleSpec,
    partition: str,
    account_id: str,
    oidc_host: str,
) -> dict[str, Any]:
    """Web-identity trust for one operator, gated by its service accounts."""
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Sid": statement_id("trust", spec.key),
                "Effect": "Allow",
                "Principal": {"Federated": oidc_provider_arn(partition, account_id, oidc_host)},
                "Action": ASSUME_ROLE_WITH_WEB_IDENTITY,
                "Condition": subject_condition(oidc_host, spec.subjects),
            }
        ],
    }


def build_account_trust_policy(role_key: str, principal: TrustPrincipal) -> dict[str, Any]:
    """sts:AssumeRole trust for a cross-account or service principal."""
    if principal.type == TrustPrincipalType.SERVICE:
        principal_block = {"Service": principal.value}
    elif principal.type == TrustPrincipalType.ACCOUNT:
        principal_block = {"AWS": principal.value}
    else:
        raise ValueError(f"Account roles cannot use {principal.type.value} trust")

    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Sid": statement_id("trust", role_key),
                "Effect": "Allow",
                "Principal": principal_block,
                "Action": ASSUME_ROLE,
            }
        ],
    }


def _missing_registry_entry(key: str, role_name: str) -> PreflightIssue:
    return PreflightIssue(
        kind=IssueKind.MISSING_PREREQUISITE,
        identifier=key,
        message=f"Policy registry has no entry '{key}' required by role {role_name}",
        remediation=[
            f"Add '{key}' to the policy registry",
            "Supply an explicit role reference instead",
        ],
    )


def _ownership_tags(config: IdentityConfigResolved, owner_id: str, scope: RoleScope, role_type: str) -> dict[str, str]:
    return {
        **config.tags,
        OWNER_TAG: owner_id,
        SCOPE_TAG: scope.value,
        ROLE_TYPE_TAG: role_type,
    }


def account_role_request(
    config: IdentityConfigResolved,
    spec: AccountRoleSpec,
) -> tuple[Optional[RoleRequest], list[PreflightIssue]]:
    roles = config.account_roles
    role_name = account_role_name(roles.prefix, spec)
    issues: list[PreflightIssue] = []

    policy = lookup_policy(
        config.policy_registry,
        spec.policy_key,
        config.partition.value,
        spec.managed_policy,
    )
    if policy is None:
        issues.append(_missing_registry_entry(spec.policy_key, role_name))

    if spec.trust_type == TrustPrincipalType.SERVICE:
        principal = TrustPrincipal(type=spec.trust_type, value=spec.trust_source)
    else:
        principal = TrustPrincipal(
            type=spec.trust_type,
            value=config.policy_registry.get(spec.trust_source),
        )
        if principal.value is None and roles.create:
            issues.append(_missing_registry_entry(spec.trust_source, role_name))

    if issues:
        return None, issues

    trust_policy = None
    if principal.value is not None:
        trust_policy = build_account_trust_policy(spec.role_type.value, principal)

    return (
        RoleRequest(
            kind=EntityKind.ACCOUNT_ROLE,
            logical_name=spec.role_type.value,
            role_name=role_name,
            identifier=config.role_arn(roles.path, role_name),
            scope=roles.scope,
            owner_id=roles.owner_id,
            trust_principal=principal,
            expected_policies=(policy,),
            trust_policy=trust_policy,
            path=roles.path,
            permissions_boundary=roles.permissions_boundary,
            tags=_ownership_tags(config, roles.owner_id, roles.scope, spec.role_type.value),
        ),
        [],
    )


def operator_role_request(
    config: IdentityConfigResolved,
    spec: OperatorRoleSpec,
    oidc_host: Optional[str],
) -> tuple[Optional[RoleRequest], list[PreflightIssue]]:
    """oidc_host is None while the OIDC endpoint is still to be created."""
    roles = config.operator_roles
    role_name = spec.role_name(roles.prefix)
    partition = config.partition.value

    policy = lookup_policy(config.policy_registry, spec.policy_key, partition, spec.managed_policy)
    if policy is None:
        return None, [_missing_registry_entry(spec.policy_key, role_name)]

    trust_policy = None
    principal = TrustPrincipal(type=TrustPrincipalType.FEDERATED)
    if oidc_host:
        principal = TrustPrincipal(
            type=TrustPrincipalType.FEDERATED,
            value=oidc_provider_arn(partition, config.account_id, oidc_host),
        )
        trust_policy = build_operator_trust_policy(spec, partition, config.account_id, oidc_host)

    return (
        RoleRequest(
            kind=EntityKind.OPERATOR_ROLE,
            logical_name=spec.key,
            role_name=role_name,
            identifier=config.role_arn(roles.path, role_name),
            scope=RoleScope.CLUSTER_SCOPED,
            owner_id=roles.owner_id,
            trust_principal=principal,
            expected_policies=(policy,),
            trust_policy=trust_policy,
            path=roles.path,
            permissions_boundary=roles.permissions_boundary,
            tags=_ownership_tags(
                config,
                roles.owner_id,
                RoleScope.CLUSTER_SCOPED,
                f"{spec.namespace}/{spec.name}",
            ),
        ),
        [],
    )


def build_account_role_requests(
    config: IdentityConfigResolved,
) -> tuple[list[RoleRequest], list[PreflightIssue]]:
    requests: list[RoleRequest] = []
    issues: list[PreflightIssue] = []

    for spec in account_role_catalog(config.cluster_variant):
        if spec.role_type in config.account_roles.explicit_refs:
            requests.append(_explicit_placeholder(config, spec))
            continue
        request, request_issues = account_role_request(config, spec)
        issues.extend(request_issues)
        if request:
            requests.append(request)

    return requests, issues


def build_operator_role_requests(
    config: IdentityConfigResolved,
    oidc_host: Optional[str],
) -> tuple[list[RoleRequest], list[PreflightIssue]]:
    requests: list[RoleRequest] = []
    issues: list[PreflightIssue] = []

    for spec in operator_role_catalog(config.cluster_variant):
        request, request_issues = operator_role_request(config, spec, oidc_host)
        if spec.key in config.operator_roles.explicit_refs and request is None:
            # Explicit references do not need a catalog policy
            request = _explicit_operator_placeholder(config, spec)
            request_issues = []
        issues.extend(request_issues)
        if request:
            requests.append(request)

    return requests, issues


def _explicit_placeholder(config: IdentityConfigResolved, spec: AccountRoleSpec) -> RoleRequest:
    roles = config.account_roles
    role_name = account_role_name(roles.prefix, spec)
    return RoleRequest(
        kind=EntityKind.ACCOUNT_ROLE,
        logical_name=spec.role_type.value,
        role_name=role_name,
        identifier=config.role_arn(roles.path, role_name),
        scope=roles.scope,
        owner_id=roles.owner_id,
        trust_principal=TrustPrincipal(
            type=spec.trust_type,
            value=spec.trust_source if spec.trust_type == TrustPrincipalType.SERVICE else None,
        ),
        expected_policies=(),
        path=roles.path,
    )


def _explicit_operator_placeholder(config: IdentityConfigResolved, spec: OperatorRoleSpec) -> RoleRequest:
    roles = config.operator_roles
    role_name = spec.role_name(roles.prefix)
    return RoleRequest(
        kind=EntityKind.OPERATOR_ROLE,
        logical_name=spec.key,
        role_name=role_name,
        identifier=config.role_arn(roles.path, role_name),
        scope=RoleScope.CLUSTER_SCOPED,
        owner_id=roles.owner_id,
        trust_principal=TrustPrincipal(type=TrustPrincipalType.FEDERATED),
        expected_policies=(),
        path=roles.path,
    )
