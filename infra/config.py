import json
from dataclasses import dataclass
from typing import Optional

import pulumi

from api.models import (
    AccountRolesInput,
    EncryptionInput,
    IdentityConfigInput,
    KeyDomainInput,
    OidcInput,
    OperatorRolesInput,
)

DEFAULT_PROPAGATION_DELAY_SECONDS = 30


@dataclass
class PulumiIdentityConfig:
    """Identity configuration loaded from Pulumi config for use in infrastructure code."""

    identity: IdentityConfigInput

    # Role the AWS provider assumes in the target account (optional)
    deployment_role_arn: Optional[str]
    external_id: Optional[pulumi.Output[str]]

    cluster_manager_url: Optional[str]
    cluster_manager_token: Optional[pulumi.Output[str]]

    propagation_delay_seconds: int = DEFAULT_PROPAGATION_DELAY_SECONDS


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse a string boolean value."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


def _parse_json(value: Optional[str], default: dict | list | None = None) -> dict | list | None:
    """Parse a JSON string."""
    if value is None:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _parse_dict(value: Optional[str]) -> dict[str, str]:
    parsed = _parse_json(value, {})
    if not isinstance(parsed, dict):
        return {}
    return {str(k): str(v) for k, v in parsed.items()}


def _optional(config: pulumi.Config, key: str, fields: dict, name: str) -> None:
    """Copy a config value into fields only when set, so model defaults apply."""
    value = config.get(key)
    if value is not None:
        fields[name] = value


def _load_account_roles(config: pulumi.Config) -> AccountRolesInput:
    fields: dict = {
        "create": _parse_bool(config.get("createAccountRoles"), False),
        "explicit_refs": _parse_dict(config.get("accountRoleRefs")),
    }
    _optional(config, "accountRolesScope", fields, "scope")
    _optional(config, "accountRolePrefix", fields, "prefix")
    _optional(config, "accountRolePath", fields, "path")
    _optional(config, "accountRolesPermissionsBoundary", fields, "permissions_boundary")
    return AccountRolesInput(**fields)


def _load_operator_roles(config: pulumi.Config) -> OperatorRolesInput:
    fields: dict = {
        "create": _parse_bool(config.get("createOperatorRoles"), True),
        "explicit_refs": _parse_dict(config.get("operatorRoleRefs")),
    }
    _optional(config, "operatorRolePrefix", fields, "prefix")
    _optional(config, "operatorRolePath", fields, "path")
    _optional(config, "operatorRolesPermissionsBoundary", fields, "permissions_boundary")
    return OperatorRolesInput(**fields)


def _load_oidc(config: pulumi.Config) -> OidcInput:
    fields: dict = {"create": _parse_bool(config.get("createOidc"), True)}
    _optional(config, "oidcMode", fields, "mode")
    _optional(config, "oidcEndpointUrl", fields, "endpoint_url")
    _optional(config, "oidcConfigId", fields, "config_id")
    _optional(config, "oidcSecretRef", fields, "secret_ref")
    _optional(config, "oidcIssuerUrl", fields, "issuer_url")
    return OidcInput(**fields)


def _load_key_domain(config: pulumi.Config, prefix: str) -> KeyDomainInput:
    fields: dict = {}
    _optional(config, f"{prefix}KeyMode", fields, "mode")
    _optional(config, f"{prefix}KeyRef", fields, "key_ref")
    return KeyDomainInput(**fields)


def _load_encryption(config: pulumi.Config) -> EncryptionInput:
    fields: dict = {
        "cluster_key": _load_key_domain(config, "cluster"),
        "infrastructure_key": _load_key_domain(config, "infrastructure"),
        "etcd_encryption": _parse_bool(config.get("etcdEncryption"), False),
    }
    _optional(config, "keyPrincipalBinding", fields, "principal_binding")
    return EncryptionInput(**fields)


def load_identity_config() -> PulumiIdentityConfig:
    """Load identity configuration from Pulumi config."""
    config = pulumi.Config()

    fields: dict = {
        "cluster_name": config.require("clusterName"),
        "account_id": config.require("accountId"),
        "region": config.get("awsRegion") or "us-east-1",
        "account_roles": _load_account_roles(config),
        "operator_roles": _load_operator_roles(config),
        "oidc": _load_oidc(config),
        "encryption": _load_encryption(config),
        "policy_registry": _parse_dict(config.get("policyRegistry")),
        "tags": _parse_dict(config.get("tags")),
    }
    _optional(config, "preset", fields, "preset")
    _optional(config, "clusterVariant", fields, "cluster_variant")
    _optional(config, "partition", fields, "partition")

    deployment_role_arn = config.get("deploymentRoleArn")
    external_id = config.get_secret("externalId") if deployment_role_arn else None

    return PulumiIdentityConfig(
        identity=IdentityConfigInput(**fields),
        deployment_role_arn=deployment_role_arn,
        external_id=external_id,
        cluster_manager_url=config.get("clusterManagerUrl"),
        cluster_manager_token=config.get_secret("clusterManagerToken"),
        propagation_delay_seconds=config.get_int("propagationDelaySeconds")
        or DEFAULT_PROPAGATION_DELAY_SECONDS,
    )
