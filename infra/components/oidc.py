from typing import Any, Optional

import pulumi
import pulumi_aws as aws
import pulumi_tls as tls
from pulumi.dynamic import CreateResult, DiffResult, ReadResult, Resource, ResourceProvider

from api.models import OIDCIdentity, OidcMode, OidcState
from api.services.cluster_manager import ClusterManagerClient
from api.services.oidc_provisioner import OidcEvent, advance

OIDC_CLIENT_IDS = ["openshift", "sts.amazonaws.com"]

_REPLACE_ON = ("base_url", "managed", "secret_arn", "issuer_url", "installer_role_arn")


def _client(props: dict[str, Any]) -> ClusterManagerClient:
    return ClusterManagerClient(props["base_url"], props["token"])


class OidcConfigProvider(ResourceProvider):
    """Registers OIDC configurations with the cluster manager."""

    def create(self, props: dict[str, Any]) -> CreateResult:
        record = _client(props).create_oidc_config(
            managed=props["managed"],
            secret_arn=props.get("secret_arn"),
            issuer_url=props.get("issuer_url"),
            installer_role_arn=props.get("installer_role_arn"),
        )
        return CreateResult(
            id_=record.id,
            outs={**props, "config_id": record.id, "endpoint_url": record.issuer_url},
        )

    def read(self, id_: str, props: dict[str, Any]) -> ReadResult:
        record = _client(props).get_oidc_config(id_)
        if record is None:
            return ReadResult(id_=None, outs={})
        return ReadResult(
            id_=record.id,
            outs={**props, "config_id": record.id, "endpoint_url": record.issuer_url},
        )

    def diff(self, id_: str, olds: dict[str, Any], news: dict[str, Any]) -> DiffResult:
        replaces = [key for key in _REPLACE_ON if olds.get(key) != news.get(key)]
        return DiffResult(
            changes=bool(replaces) or olds.get("token") != news.get("token"),
            replaces=replaces,
            delete_before_replace=True,
        )

    def delete(self, id_: str, props: dict[str, Any]) -> None:
        _client(props).delete_oidc_config(id_)


class OidcConfig(Resource):
    config_id: pulumi.Output[str]
    endpoint_url: pulumi.Output[str]

    def __init__(
        self,
        name: str,
        base_url: str,
        token: pulumi.Input[str],
        managed: bool = True,
        secret_arn: Optional[str] = None,
        issuer_url: Optional[str] = None,
        installer_role_arn: Optional[str] = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__(
            OidcConfigProvider(),
            name,
            {
                "base_url": base_url,
                "token": pulumi.Output.secret(token),
                "managed": managed,
                "secret_arn": secret_arn,
                "issuer_url": issuer_url,
                "installer_role_arn": installer_role_arn,
                "config_id": None,
                "endpoint_url": None,
            },
            opts,
        )


def _thumbprint(url: pulumi.Input[str]) -> pulumi.Output[str]:
    """SHA-1 fingerprint of the top certificate served by the issuer."""
    return tls.get_certificate_output(url=url).apply(
        lambda cert: cert.certificates[0].sha1_fingerprint
    )


class ClusterOidcIdentity(pulumi.ComponentResource):
    """OIDC configuration plus the IAM provider that trusts it.

    Externally referenced identities register no resources.
    """

    def __init__(
        self,
        name: str,
        identity: OIDCIdentity,
        cluster_manager_url: Optional[str] = None,
        cluster_manager_token: Optional[pulumi.Input[str]] = None,
        provider: aws.Provider | None = None,
        tags: dict[str, str] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("cluster-identity:oidc:ClusterOidcIdentity", name, None, opts)

        self._name = name
        self._tags = tags or {}
        self.config: Optional[OidcConfig] = None
        self.oidc_provider: Optional[aws.iam.OpenIdConnectProvider] = None

        if not identity.create:
            self.endpoint_url = pulumi.Output.from_input(identity.endpoint_url)
            self.config_id = pulumi.Output.from_input(identity.config_id)
            self.provider_arn = pulumi.Output.from_input(identity.provider_ref)
            self.thumbprint = pulumi.Output.from_input(identity.thumbprint)
            self.state = pulumi.Output.from_input(identity.state.value)
        else:
            if not cluster_manager_url or cluster_manager_token is None:
                raise ValueError("Creating an OIDC configuration needs the cluster manager URL and token")

            managed = identity.mode == OidcMode.MANAGED
            self.config = OidcConfig(
                f"{name}-oidc-config",
                base_url=cluster_manager_url,
                token=cluster_manager_token,
                managed=managed,
                secret_arn=identity.secret_ref,
                issuer_url=None if managed else identity.endpoint_url,
                installer_role_arn=identity.bootstrap_role_ref,
                opts=pulumi.ResourceOptions(parent=self),
            )
            self.endpoint_url = self.config.endpoint_url
            self.config_id = self.config.config_id

            self.thumbprint = _thumbprint(self.endpoint_url)
            self.oidc_provider = aws.iam.OpenIdConnectProvider(
                f"{name}-oidc-provider",
                url=self.endpoint_url,
                client_id_lists=OIDC_CLIENT_IDS,
                thumbprint_lists=[self.thumbprint],
                tags={
                    "Name": f"{name}-oidc-provider",
                    **self._tags,
                },
                opts=pulumi.ResourceOptions(
                    parent=self,
                    provider=provider,
                    depends_on=[self.config],
                ),
            )
            self.provider_arn = self.oidc_provider.arn

            if managed:
                self.state = pulumi.Output.from_input(identity.state.value)
            else:
                self.state = self.oidc_provider.arn.apply(
                    lambda _: advance(OidcState.UNMANAGED_PENDING, OidcEvent.PROVIDER_CREATED).value
                )

        self.host = self.endpoint_url.apply(lambda url: url.replace("https://", "") if url else url)

        self.register_outputs(
            {
                "endpoint_url": self.endpoint_url,
                "config_id": self.config_id,
                "provider_arn": self.provider_arn,
                "state": self.state,
            }
        )
