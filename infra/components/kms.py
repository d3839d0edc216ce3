from typing import Optional

import pulumi
import pulumi_aws as aws

from api.models import EncryptionKeyDomain, KeyMode, KeyPrincipalBinding

DELETION_WINDOW_DAYS = 7


class EncryptionKey(pulumi.ComponentResource):
    """One key domain. Only customer_created domains register resources.

    With exact principal binding the key starts on the default (root-only)
    policy and the full policy is applied once the listed roles exist.
    """

    def __init__(
        self,
        name: str,
        domain: EncryptionKeyDomain,
        cluster_name: str,
        provider: aws.Provider | None = None,
        tags: dict[str, str] | None = None,
        depends_on: list[pulumi.Resource] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__("cluster-identity:kms:EncryptionKey", name, None, opts)

        child_opts = pulumi.ResourceOptions(parent=self, provider=provider, depends_on=depends_on or [])
        self._tags = tags or {}

        self.key: Optional[aws.kms.Key] = None
        self.key_policy: Optional[aws.kms.KeyPolicy] = None
        self.alias: Optional[aws.kms.Alias] = None

        if domain.mode != KeyMode.CUSTOMER_CREATED:
            self.key_ref = pulumi.Output.from_input(domain.key_ref)
        else:
            two_phase = domain.principal_binding == KeyPrincipalBinding.EXACT
            key_name = f"{name}-{domain.domain_id.value}-key"

            self.key = aws.kms.Key(
                key_name,
                description=f"{cluster_name} {domain.domain_id.value} encryption key",
                enable_key_rotation=True,
                deletion_window_in_days=DELETION_WINDOW_DAYS,
                policy=None if two_phase else domain.policy_json(),
                tags={
                    "Name": key_name,
                    **self._tags,
                },
                opts=child_opts,
            )

            if two_phase:
                self.key_policy = aws.kms.KeyPolicy(
                    f"{key_name}-policy",
                    key_id=self.key.id,
                    policy=domain.policy_json(),
                    opts=child_opts,
                )

            self.alias = aws.kms.Alias(
                f"{key_name}-alias",
                name=domain.alias,
                target_key_id=self.key.key_id,
                opts=child_opts,
            )
            self.key_ref = self.key.arn

        self.register_outputs(
            {
                "key_ref": self.key_ref,
            }
        )
