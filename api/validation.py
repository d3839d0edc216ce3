import re
from typing import Any, Optional

from api.catalog import operator_role_catalog
from api.models import (
    AccountRoleType,
    CloudPartition,
    EncryptionKeyDomain,
    IdentityConfigResolved,
    IssueKind,
    KeyDomainId,
    KeyDomainInput,
    KeyMode,
    OidcMode,
    PreflightErrorResponse,
    PreflightIssue,
)

_PARTITION = r"(?P<partition>aws|aws-us-gov|aws-cn)"
_REGION = r"(?P<region>[a-z]{2}(-gov)?-[a-z]+-\d)"

ROLE_ARN_RE = re.compile(
    rf"^arn:{_PARTITION}:iam::(?P<account>\d{{12}}):role"
    r"(?P<path>/(?:[\w+=,.@-]+/)*)(?P<name>[\w+=,.@-]{1,64})$"
)
KMS_KEY_ARN_RE = re.compile(
    rf"^arn:{_PARTITION}:kms:{_REGION}:(?P<account>\d{{12}}):key/"
    r"(?P<key_id>mrk-[0-9a-f]{32}|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$"
)
SECRET_ARN_RE = re.compile(
    rf"^arn:{_PARTITION}:secretsmanager:{_REGION}:(?P<account>\d{{12}}):secret:[\w/+=.@-]+$"
)
POLICY_ARN_RE = re.compile(rf"^arn:{_PARTITION}:iam::(\d{{12}}|aws):policy/[\w+=,.@/-]+$")
PRINCIPAL_ARN_RE = re.compile(rf"^arn:{_PARTITION}:iam::\d{{12}}:(root|role/[\w+=,.@/-]+)$")

GOVCLOUD_REGION_PREFIX = "us-gov-"


class ProvisioningError(Exception):
    """Fatal preflight error. Never retried by the engine."""

    kind: IssueKind

    def __init__(self, issues: list[PreflightIssue]):
        self.issues = issues
        messages = [f"{i.identifier}: {i.message}" for i in issues]
        super().__init__(f"Preflight failed: {'; '.join(messages)}")

    @property
    def identifier(self) -> str:
        return self.issues[0].identifier

    def to_response(self) -> PreflightErrorResponse:
        """Convert to API response format."""
        return PreflightErrorResponse(
            error=self.kind.value,
            message=f"Preflight failed with {len(self.issues)} issue(s)",
            issues=self.issues,
        )


class MissingPrerequisite(ProvisioningError):
    """A principal or registry entry that must already exist is absent."""

    kind = IssueKind.MISSING_PREREQUISITE


class PolicyDrift(ProvisioningError):
    """A live principal's attached policy no longer matches the catalog."""

    kind = IssueKind.POLICY_DRIFT


class DuplicateResource(ProvisioningError):
    """Creation requested against a principal that already exists."""

    kind = IssueKind.DUPLICATE_RESOURCE


class InvalidReference(ProvisioningError):
    """A supplied key, role, secret or policy reference is malformed."""

    kind = IssueKind.INVALID_REFERENCE


class TopologyConflict(ProvisioningError):
    """Structurally impossible combination of flags."""

    kind = IssueKind.TOPOLOGY_CONFLICT


ERRORS_BY_KIND: dict[IssueKind, type[ProvisioningError]] = {
    cls.kind: cls
    for cls in (
        MissingPrerequisite,
        PolicyDrift,
        DuplicateResource,
        InvalidReference,
        TopologyConflict,
    )
}


def raise_for_issues(issues: list[PreflightIssue]) -> None:
    """Raise the error class of the first issue, carrying every issue."""
    if issues:
        raise ERRORS_BY_KIND[issues[0].kind](issues)


def _invalid(identifier: str, message: str, remediation: str) -> PreflightIssue:
    return PreflightIssue(
        kind=IssueKind.INVALID_REFERENCE,
        identifier=identifier,
        message=message,
        remediation=[remediation],
    )


def _conflict(identifier: str, message: str, *remediation: str) -> PreflightIssue:
    return PreflightIssue(
        kind=IssueKind.TOPOLOGY_CONFLICT,
        identifier=identifier,
        message=message,
        remediation=list(remediation),
    )


def is_valid_role_arn(arn: str, partition: CloudPartition) -> tuple[bool, Optional[str]]:
    """Check role ARN grammar and partition.

    Returns (is_valid, error_message).
    """
    match = ROLE_ARN_RE.match(arn)
    if not match:
        return False, "not a valid IAM role ARN"
    if match.group("partition") != partition.value:
        return False, f"role is in partition '{match.group('partition')}', expected '{partition.value}'"
    return True, None


def is_valid_kms_key_arn(
    arn: str,
    partition: CloudPartition,
    region: str,
) -> tuple[bool, Optional[str]]:
    """Check KMS key ARN grammar, partition and region."""
    match = KMS_KEY_ARN_RE.match(arn)
    if not match:
        return False, "not a valid KMS key ARN (arn:<partition>:kms:<region>:<account>:key/<key-id>)"
    if match.group("partition") != partition.value:
        return False, f"key is in partition '{match.group('partition')}', expected '{partition.value}'"
    if match.group("region") != region:
        return False, f"key is in region '{match.group('region')}', expected '{region}'"
    return True, None


def validate_key_input(
    domain_id: KeyDomainId,
    key: KeyDomainInput,
    partition: CloudPartition,
    region: str,
) -> list[PreflightIssue]:
    errors: list[PreflightIssue] = []
    field = f"encryption.{domain_id.value}_key.key_ref"

    if key.mode == KeyMode.CUSTOMER_SUPPLIED:
        if not key.key_ref:
            errors.append(
                _invalid(
                    field,
                    "customer_supplied key mode requires a key reference",
                    f"Set {field} to an existing KMS key ARN or choose customer_created",
                )
            )
        else:
            valid, err = is_valid_kms_key_arn(key.key_ref, partition, region)
            if not valid:
                errors.append(
                    _invalid(
                        key.key_ref,
                        f"Invalid {domain_id.value} key reference: {err}",
                        f"Supply a key ARN like arn:{partition.value}:kms:{region}:<account>:key/<key-id>",
                    )
                )
    elif key.key_ref:
        errors.append(
            _conflict(
                field,
                f"key_ref is only used with customer_supplied, not {key.mode.value}",
                f"Remove {field} or switch the {domain_id.value} key mode to customer_supplied",
            )
        )

    return errors


def validate_references(config: IdentityConfigResolved) -> list[PreflightIssue]:
    """Grammar checks for every externally supplied reference."""
    errors: list[PreflightIssue] = []
    partition = config.partition

    for role_type, arn in sorted(config.account_roles.explicit_refs.items()):
        valid, err = is_valid_role_arn(arn, partition)
        if not valid:
            errors.append(
                _invalid(
                    arn,
                    f"Invalid explicit {role_type.value} role reference: {err}",
                    f"Use arn:{partition.value}:iam::<account>:role/<name> or drop the explicit reference",
                )
            )

    for key, arn in sorted(config.operator_roles.explicit_refs.items()):
        valid, err = is_valid_role_arn(arn, partition)
        if not valid:
            errors.append(
                _invalid(
                    arn,
                    f"Invalid explicit operator role reference for '{key}': {err}",
                    f"Use arn:{partition.value}:iam::<account>:role/<name> or drop the explicit reference",
                )
            )

    errors.extend(
        validate_key_input(
            KeyDomainId.CLUSTER, config.encryption.cluster_key, partition, config.region
        )
    )
    errors.extend(
        validate_key_input(
            KeyDomainId.INFRASTRUCTURE,
            config.encryption.infrastructure_key,
            partition,
            config.region,
        )
    )

    oidc = config.oidc
    if oidc.create and oidc.mode == OidcMode.UNMANAGED and oidc.secret_ref:
        match = SECRET_ARN_RE.match(oidc.secret_ref)
        if not match or match.group("partition") != partition.value:
            errors.append(
                _invalid(
                    oidc.secret_ref,
                    "Invalid OIDC private key secret reference",
                    f"Use arn:{partition.value}:secretsmanager:<region>:<account>:secret:<name>",
                )
            )

    for name, value in sorted(config.policy_registry.items()):
        if name.endswith("_policy"):
            match = POLICY_ARN_RE.match(value)
            expected = f"arn:{partition.value}:iam::<account|aws>:policy/<name>"
        elif name.endswith("_trust_principal"):
            match = PRINCIPAL_ARN_RE.match(value)
            expected = f"arn:{partition.value}:iam::<account>:role/<name>"
        else:
            continue
        if not match or match.group("partition") != partition.value:
            errors.append(
                _invalid(
                    value,
                    f"Invalid policy registry entry '{name}'",
                    f"Fix the registry entry to the form {expected}",
                )
            )

    for arn in (
        config.account_roles.permissions_boundary,
        config.operator_roles.permissions_boundary,
    ):
        if arn and not POLICY_ARN_RE.match(arn):
            errors.append(
                _invalid(
                    arn,
                    "Invalid permissions boundary policy reference",
                    f"Use arn:{partition.value}:iam::<account>:policy/<name>",
                )
            )

    return errors


def validate_operator_role_names(config: IdentityConfigResolved) -> list[PreflightIssue]:
    """Truncated operator role names must stay unique within a cluster."""
    errors: list[PreflightIssue] = []
    explicit = set(config.operator_roles.explicit_refs)

    keys_by_name: dict[str, list[str]] = {}
    for spec in operator_role_catalog(config.cluster_variant):
        if spec.key in explicit:
            continue
        keys_by_name.setdefault(spec.role_name(config.operator_roles.prefix), []).append(spec.key)

    for role_name, keys in sorted(keys_by_name.items()):
        if len(keys) > 1:
            errors.append(
                _conflict(
                    role_name,
                    f"Operator roles {', '.join(keys)} all truncate to the role name {role_name}",
                    "Set a shorter operator_roles.prefix",
                    "Supply explicit role references for the colliding operators",
                )
            )

    return errors


def validate_topology(config: IdentityConfigResolved) -> list[PreflightIssue]:
    """Flag combinations that cannot be provisioned."""
    errors: list[PreflightIssue] = []

    govcloud_region = config.region.startswith(GOVCLOUD_REGION_PREFIX)
    if config.partition == CloudPartition.REGULATED and not govcloud_region:
        errors.append(
            _conflict(
                config.region,
                "Regulated partition requires a GovCloud region",
                "Use a us-gov-* region or the standard partition",
            )
        )
    if config.partition == CloudPartition.STANDARD and govcloud_region:
        errors.append(
            _conflict(
                config.region,
                "GovCloud regions are only reachable in the regulated partition",
                "Set partition to aws-us-gov or pick a commercial region",
            )
        )

    oidc = config.oidc
    if oidc.create and oidc.mode == OidcMode.UNMANAGED:
        if not oidc.secret_ref:
            errors.append(
                _conflict(
                    "oidc.secret_ref",
                    "Unmanaged OIDC configuration requires the issuer private key secret",
                    "Create the issuer key secret and set oidc.secret_ref",
                    "Switch to managed OIDC",
                )
            )
        if not oidc.issuer_url:
            errors.append(
                _conflict(
                    "oidc.issuer_url",
                    "Unmanaged OIDC configuration requires a customer-hosted issuer URL",
                    "Publish the discovery documents and set oidc.issuer_url",
                    "Switch to managed OIDC",
                )
            )
    if not oidc.create and not oidc.endpoint_url:
        errors.append(
            _conflict(
                "oidc.endpoint_url",
                "An existing OIDC endpoint must be supplied when OIDC creation is disabled",
                "Set oidc.endpoint_url to the existing issuer URL",
                "Enable oidc.create",
            )
        )

    cluster_key = config.encryption.cluster_key
    if (
        config.encryption.etcd_encryption
        and not config.hosted_control_plane
        and cluster_key.mode == KeyMode.CUSTOMER_CREATED
    ):
        errors.append(
            _conflict(
                "encryption.etcd_encryption",
                "etcd encryption key statements trust hosted control plane operator roles, "
                "which the classic variant does not have",
                "Use the hosted control plane variant",
                "Supply your own cluster key (customer_supplied) with its own policy",
            )
        )

    if (
        config.hosted_control_plane
        and AccountRoleType.CONTROL_PLANE in config.account_roles.explicit_refs
    ):
        errors.append(
            _conflict(
                "account_roles.explicit_refs.control_plane",
                "Hosted control plane clusters have no control plane account role",
                "Remove the control_plane explicit reference",
            )
        )

    known_operators = {spec.key for spec in operator_role_catalog(config.cluster_variant)}
    for key in sorted(set(config.operator_roles.explicit_refs) - known_operators):
        errors.append(
            _conflict(
                f"operator_roles.explicit_refs.{key}",
                f"'{key}' is not an operator role of the {config.cluster_variant.value} variant",
                f"Use one of: {', '.join(sorted(known_operators))}",
            )
        )

    errors.extend(validate_operator_role_names(config))

    return errors


def _collect_strings(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        return [s for k, v in value.items() for s in _collect_strings(k) + _collect_strings(v)]
    if isinstance(value, list):
        return [s for item in value for s in _collect_strings(item)]
    return []


def validate_key_domain_separation(
    cluster: EncryptionKeyDomain,
    infrastructure: EncryptionKeyDomain,
    cluster_markers: list[str],
    infrastructure_markers: list[str],
) -> list[PreflightIssue]:
    """Neither domain may mention the other domain's principal patterns."""
    errors: list[PreflightIssue] = []

    for domain, foreign in (
        (cluster, infrastructure_markers),
        (infrastructure, cluster_markers),
    ):
        text = "\n".join(_collect_strings(domain.statements))
        for marker in foreign:
            if marker in text:
                errors.append(
                    _conflict(
                        marker,
                        f"{domain.domain_id.value} key policy references a principal pattern "
                        "owned by the other key domain",
                        "Keep the cluster and infrastructure key statements disjoint",
                    )
                )

    return errors


def validate_config(config: IdentityConfigResolved) -> None:
    """Validate the resolved configuration.

    Raises the ProvisioningError subclass of the first issue found.
    """
    errors: list[PreflightIssue] = []

    errors.extend(validate_topology(config))
    errors.extend(validate_references(config))

    raise_for_issues(errors)


