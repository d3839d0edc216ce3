"""Key policy statements for the cluster and infrastructure key domains.

The cluster domain grants by role identity (name pattern or exact ARN). The
infrastructure domain grants only to AWS services acting on this account's
behalf and never mentions a role.
"""

from typing import Any, Optional

from api.catalog import CONTROL_PLANE_OPERATOR, EC2_SERVICE_PRINCIPAL, KMS_PROVIDER, NODE_POOL_MANAGEMENT
from api.models import (
    EncryptionKeyDomain,
    IdentityConfigResolved,
    KeyDomainId,
    KeyDomainInput,
    KeyMode,
    KeyPrincipalBinding,
    PreflightIssue,
    Provenance,
    RoleBinding,
)
from api.validation import validate_key_domain_separation

USAGE_ACTIONS = sorted(
    ["kms:Decrypt", "kms:DescribeKey", "kms:Encrypt", "kms:GenerateDataKey*", "kms:ReEncrypt*"]
)
GRANT_ACTIONS = sorted(["kms:CreateGrant", "kms:ListGrants", "kms:RevokeGrant"])
NODE_POOL_ACTIONS = sorted(["kms:CreateGrant", "kms:DescribeKey", "kms:GenerateDataKeyWithoutPlaintext"])
KMS_PROVIDER_ACTIONS = sorted(["kms:Decrypt", "kms:DescribeKey", "kms:Encrypt"])
CONTROL_PLANE_OPERATOR_ACTIONS = sorted(["kms:Decrypt", "kms:DescribeKey", "kms:GenerateDataKey"])
LOGS_ACTIONS = sorted(
    ["kms:Decrypt*", "kms:Describe*", "kms:Encrypt*", "kms:GenerateDataKey*", "kms:ReEncrypt*"]
)

ALIAS_SUFFIX = {
    KeyDomainId.CLUSTER: "cluster-key",
    KeyDomainId.INFRASTRUCTURE: "infra-key",
}


def key_alias(cluster_name: str, domain_id: KeyDomainId) -> str:
    return f"alias/{cluster_name}-{ALIAS_SUFFIX[domain_id]}"


def root_statement(partition: str, account_id: str) -> dict[str, Any]:
    return {
        "Sid": "EnableRootAccountPermissions",
        "Effect": "Allow",
        "Principal": {"AWS": f"arn:{partition}:iam::{account_id}:root"},
        "Action": "kms:*",
        "Resource": "*",
    }


def role_pattern(config: IdentityConfigResolved, path: str, prefix: str) -> str:
    return f"arn:{config.partition.value}:iam::{config.account_id}:role{path}{prefix}-*"


def autoscaling_service_role(config: IdentityConfigResolved) -> str:
    return (
        f"arn:{config.partition.value}:iam::{config.account_id}:role/aws-service-role/"
        "autoscaling.amazonaws.com/AWSServiceRoleForAutoScaling"
    )


def _role_grant_pair(
    sid: str,
    binding: KeyPrincipalBinding,
    principals: list[str],
) -> list[dict[str, Any]]:
    """Usage statement plus grant-management statement for a set of roles."""
    if not principals:
        return []
    if binding == KeyPrincipalBinding.EXACT:
        principal: Any = {"AWS": principals[0] if len(principals) == 1 else principals}
        usage_condition: dict[str, Any] = {}
        grant_condition: dict[str, Any] = {"Bool": {"kms:GrantIsForAWSResource": "true"}}
    else:
        match = principals[0] if len(principals) == 1 else principals
        principal = {"AWS": "*"}
        usage_condition = {"StringLike": {"aws:PrincipalArn": match}}
        grant_condition = {
            "Bool": {"kms:GrantIsForAWSResource": "true"},
            "StringLike": {"aws:PrincipalArn": match},
        }

    usage = {
        "Sid": f"Allow{sid}Usage",
        "Effect": "Allow",
        "Principal": principal,
        "Action": USAGE_ACTIONS,
        "Resource": "*",
    }
    if usage_condition:
        usage["Condition"] = usage_condition

    return [
        usage,
        {
            "Sid": f"Allow{sid}Grants",
            "Effect": "Allow",
            "Principal": principal,
            "Action": GRANT_ACTIONS,
            "Resource": "*",
            "Condition": grant_condition,
        },
    ]


def _single_role_statement(sid: str, role_arn: str, actions: list[str]) -> dict[str, Any]:
    return {
        "Sid": sid,
        "Effect": "Allow",
        "Principal": {"AWS": "*"},
        "Action": actions,
        "Resource": "*",
        "Condition": {"StringEquals": {"aws:PrincipalArn": role_arn}},
    }


def _principals(
    binding: KeyPrincipalBinding,
    pattern: str,
    roles: list[RoleBinding],
) -> list[str]:
    if binding == KeyPrincipalBinding.EXACT:
        return sorted({r.resolved_identifier for r in roles})
    explicit = {r.resolved_identifier for r in roles if r.provenance == Provenance.EXPLICIT}
    return sorted({pattern} | explicit)


def _operator_arn(
    config: IdentityConfigResolved,
    operator_roles: list[RoleBinding],
    key: str,
    default_name: str,
) -> str:
    for role in operator_roles:
        if role.logical_name == key:
            return role.resolved_identifier
    return config.role_arn(config.operator_roles.path, default_name)


def cluster_statements(
    config: IdentityConfigResolved,
    account_roles: list[RoleBinding],
    operator_roles: list[RoleBinding],
) -> list[dict[str, Any]]:
    partition = config.partition.value
    binding = config.encryption.principal_binding
    accounts = config.account_roles
    operators = config.operator_roles

    statements = [root_statement(partition, config.account_id)]
    statements.extend(
        _role_grant_pair(
            "AccountRoles",
            binding,
            _principals(binding, role_pattern(config, accounts.path, accounts.prefix), account_roles),
        )
    )
    statements.extend(
        _role_grant_pair(
            "OperatorRoles",
            binding,
            _principals(binding, role_pattern(config, operators.path, operators.prefix), operator_roles),
        )
    )

    if config.hosted_control_plane:
        statements.append(
            {
                "Sid": "AllowEc2Service",
                "Effect": "Allow",
                "Principal": {"Service": EC2_SERVICE_PRINCIPAL},
                "Action": USAGE_ACTIONS,
                "Resource": "*",
            }
        )
        statements.append(
            {
                "Sid": "AllowAutoscalingServiceLinkedRole",
                "Effect": "Allow",
                "Principal": {"AWS": autoscaling_service_role(config)},
                "Action": sorted(USAGE_ACTIONS + ["kms:CreateGrant"]),
                "Resource": "*",
            }
        )
        statements.append(
            _single_role_statement(
                "AllowNodePoolManagement",
                _operator_arn(
                    config,
                    operator_roles,
                    NODE_POOL_MANAGEMENT.key,
                    NODE_POOL_MANAGEMENT.role_name(operators.prefix),
                ),
                NODE_POOL_ACTIONS,
            )
        )

        if config.encryption.etcd_encryption:
            statements.append(
                _single_role_statement(
                    "AllowKmsProvider",
                    _operator_arn(
                        config, operator_roles, KMS_PROVIDER.key, KMS_PROVIDER.role_name(operators.prefix)
                    ),
                    KMS_PROVIDER_ACTIONS,
                )
            )
            statements.append(
                _single_role_statement(
                    "AllowControlPlaneOperator",
                    _operator_arn(
                        config,
                        operator_roles,
                        CONTROL_PLANE_OPERATOR.key,
                        CONTROL_PLANE_OPERATOR.role_name(operators.prefix),
                    ),
                    CONTROL_PLANE_OPERATOR_ACTIONS,
                )
            )

    return statements


def _via_service_statement(sid: str, service: str, account_id: str) -> dict[str, Any]:
    return {
        "Sid": sid,
        "Effect": "Allow",
        "Principal": {"AWS": "*"},
        "Action": USAGE_ACTIONS,
        "Resource": "*",
        "Condition": {
            "StringEquals": {
                "kms:CallerAccount": account_id,
                "kms:ViaService": service,
            }
        },
    }


def infrastructure_services(region: str) -> dict[str, str]:
    return {
        "logs": f"logs.{region}.amazonaws.com",
        "s3": f"s3.{region}.amazonaws.com",
        "ec2": f"ec2.{region}.amazonaws.com",
    }


def infrastructure_statements(config: IdentityConfigResolved) -> list[dict[str, Any]]:
    partition = config.partition.value
    services = infrastructure_services(config.region)

    return [
        root_statement(partition, config.account_id),
        {
            "Sid": "AllowCloudWatchLogs",
            "Effect": "Allow",
            "Principal": {"Service": services["logs"]},
            "Action": LOGS_ACTIONS,
            "Resource": "*",
            "Condition": {
                "ArnLike": {
                    "kms:EncryptionContext:aws:logs:arn": (
                        f"arn:{partition}:logs:{config.region}:{config.account_id}:*"
                    )
                }
            },
        },
        _via_service_statement("AllowS3", services["s3"], config.account_id),
        _via_service_statement("AllowBastionVolumes", services["ec2"], config.account_id),
    ]


def build_key_domain(
    domain_id: KeyDomainId,
    key_input: KeyDomainInput,
    config: IdentityConfigResolved,
    account_roles: list[RoleBinding],
    operator_roles: list[RoleBinding],
) -> EncryptionKeyDomain:
    if key_input.mode == KeyMode.PLATFORM_DEFAULT:
        return EncryptionKeyDomain(domain_id=domain_id, mode=key_input.mode)

    if key_input.mode == KeyMode.CUSTOMER_SUPPLIED:
        return EncryptionKeyDomain(domain_id=domain_id, mode=key_input.mode, key_ref=key_input.key_ref)

    if domain_id == KeyDomainId.CLUSTER:
        statements = cluster_statements(config, account_roles, operator_roles)
        principal_binding = config.encryption.principal_binding
    else:
        statements = infrastructure_statements(config)
        principal_binding = KeyPrincipalBinding.NAME_PATTERN

    return EncryptionKeyDomain(
        domain_id=domain_id,
        mode=key_input.mode,
        alias=key_alias(config.cluster_name, domain_id),
        principal_binding=principal_binding,
        statements=statements,
    )


def cluster_markers(
    config: IdentityConfigResolved,
    account_roles: list[RoleBinding],
    operator_roles: list[RoleBinding],
) -> list[str]:
    markers = {
        role_pattern(config, config.account_roles.path, config.account_roles.prefix),
        role_pattern(config, config.operator_roles.path, config.operator_roles.prefix),
    }
    markers.update(r.resolved_identifier for r in account_roles + operator_roles)
    return sorted(markers)


def build_key_domains(
    config: IdentityConfigResolved,
    account_roles: Optional[list[RoleBinding]] = None,
    operator_roles: Optional[list[RoleBinding]] = None,
) -> tuple[list[EncryptionKeyDomain], list[PreflightIssue]]:
    """Both key domains plus any separation violations between them."""
    account_roles = account_roles or []
    operator_roles = operator_roles or []
    encryption = config.encryption

    cluster = build_key_domain(
        KeyDomainId.CLUSTER, encryption.cluster_key, config, account_roles, operator_roles
    )
    infrastructure = build_key_domain(
        KeyDomainId.INFRASTRUCTURE, encryption.infrastructure_key, config, account_roles, operator_roles
    )

    issues = validate_key_domain_separation(
        cluster,
        infrastructure,
        cluster_markers(config, account_roles, operator_roles),
        sorted(infrastructure_services(config.region).values()),
    )
    return [cluster, infrastructure], issues
