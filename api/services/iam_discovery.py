import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import boto3
from botocore.exceptions import ClientError, NoCredentialsError

from api.settings import Settings

logger = logging.getLogger(__name__)

NOT_FOUND = "NoSuchEntity"


class DiscoveryCredentialsError(Exception):
    """No usable credentials for read-only discovery."""


@dataclass(frozen=True)
class ExistingPrincipal:
    """A role as it currently exists in the account."""

    arn: str
    role_name: str
    attached_policy_arns: frozenset[str]
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExistingOidcProvider:
    arn: str
    url: str
    thumbprints: tuple[str, ...]
    client_ids: tuple[str, ...] = ()


class PrincipalDirectory(Protocol):
    """Read-only view of the account's principals."""

    def get_role(self, role_name: str) -> Optional[ExistingPrincipal]: ...

    def get_oidc_provider(self, provider_arn: str) -> Optional[ExistingOidcProvider]: ...


class IamDiscovery:
    """Read-only IAM lookups. Never mutates the account."""

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, region: str) -> "IamDiscovery":
        """Build a client, assuming the discovery role when one is configured."""
        if not settings.discovery_role_arn:
            return cls(boto3.client("iam", region_name=region))

        try:
            sts = boto3.client("sts", region_name=region)
            params = {
                "RoleArn": settings.discovery_role_arn,
                "RoleSessionName": "cluster-identity-preflight",
                "DurationSeconds": 900,
            }
            if settings.discovery_external_id:
                params["ExternalId"] = settings.discovery_external_id
            assumed = sts.assume_role(**params)
        except NoCredentialsError as e:
            raise DiscoveryCredentialsError(
                f"Failed to locate AWS credentials: {e}. "
                "Use env vars, IAM role (EC2/IRSA), or other default provider chain."
            ) from e
        except ClientError as e:
            raise DiscoveryCredentialsError(f"Failed to assume role {settings.discovery_role_arn}: {e}") from e

        creds = assumed["Credentials"]
        client = boto3.client(
            "iam",
            region_name=region,
            aws_access_key_id=creds["AccessKeyId"],
            aws_secret_access_key=creds["SecretAccessKey"],
            aws_session_token=creds["SessionToken"],
        )
        return cls(client)

    def get_role(self, role_name: str) -> Optional[ExistingPrincipal]:
        try:
            response = self._client.get_role(RoleName=role_name)
        except ClientError as e:
            if e.response["Error"]["Code"] == NOT_FOUND:
                logger.debug("Role %s not found", role_name)
                return None
            raise

        role = response["Role"]
        tags = {tag["Key"]: tag["Value"] for tag in role.get("Tags", [])}

        return ExistingPrincipal(
            arn=role["Arn"],
            role_name=role["RoleName"],
            attached_policy_arns=frozenset(self._attached_policies(role_name)),
            tags=tags,
        )

    def _attached_policies(self, role_name: str) -> list[str]:
        paginator = self._client.get_paginator("list_attached_role_policies")
        arns: list[str] = []
        for page in paginator.paginate(RoleName=role_name):
            arns.extend(p["PolicyArn"] for p in page.get("AttachedPolicies", []))
        return arns

    def get_oidc_provider(self, provider_arn: str) -> Optional[ExistingOidcProvider]:
        try:
            response = self._client.get_open_id_connect_provider(
                OpenIDConnectProviderArn=provider_arn
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == NOT_FOUND:
                logger.debug("OIDC provider %s not found", provider_arn)
                return None
            raise

        return ExistingOidcProvider(
            arn=provider_arn,
            url=response["Url"],
            thumbprints=tuple(response.get("ThumbprintList", [])),
            client_ids=tuple(response.get("ClientIDList", [])),
        )
