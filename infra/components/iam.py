import json
from typing import Optional

import pulumi
import pulumi_aws as aws

from api.catalog import OperatorRoleSpec, operator_role_catalog
from api.models import ClusterVariant, RoleBinding, RoleScope
from api.services.policy_binder import build_operator_trust_policy


class _RoleSet(pulumi.ComponentResource):
    """Creates the owned bindings of a role set; references everything else."""

    def __init__(
        self,
        resource_type: str,
        name: str,
        bindings: list[RoleBinding],
        provider: aws.Provider | None,
        depends_on: list[pulumi.Resource] | None,
        opts: pulumi.ResourceOptions | None,
    ):
        super().__init__(resource_type, name, None, opts)
        self._name = name
        self._provider = provider
        self._depends_on = depends_on or []

        self.roles: dict[str, aws.iam.Role] = {}
        self.attachments: list[aws.iam.RolePolicyAttachment] = []
        self.arns: dict[str, pulumi.Output[str]] = {}

        for binding in bindings:
            if binding.owned:
                role = self._create_role(binding, self._trust_policy(binding))
                self.roles[binding.logical_name] = role
                self.arns[binding.logical_name] = role.arn
            else:
                self.arns[binding.logical_name] = pulumi.Output.from_input(
                    binding.resolved_identifier
                )

    def _trust_policy(self, binding: RoleBinding) -> pulumi.Input[str]:
        if binding.trust_policy is None:
            raise ValueError(f"Role {binding.role_name} has no trust policy to create it with")
        return json.dumps(binding.trust_policy, sort_keys=True)

    def _create_role(self, binding: RoleBinding, assume_role_policy: pulumi.Input[str]) -> aws.iam.Role:
        # Shared roles outlive any single cluster
        role_opts = pulumi.ResourceOptions(
            parent=self,
            provider=self._provider,
            retain_on_delete=binding.scope == RoleScope.SHARED,
            depends_on=self._depends_on,
        )

        role = aws.iam.Role(
            f"{self._name}-{binding.logical_name}",
            name=binding.role_name,
            path=binding.path,
            assume_role_policy=assume_role_policy,
            permissions_boundary=binding.permissions_boundary,
            tags={
                "Name": binding.role_name,
                **binding.tags,
            },
            opts=role_opts,
        )

        for i, policy_arn in enumerate(sorted(binding.policy_refs)):
            self.attachments.append(
                aws.iam.RolePolicyAttachment(
                    f"{self._name}-{binding.logical_name}-policy-{i}",
                    role=role.name,
                    policy_arn=policy_arn,
                    opts=pulumi.ResourceOptions(
                        parent=self,
                        provider=self._provider,
                        retain_on_delete=binding.scope == RoleScope.SHARED,
                    ),
                )
            )

        return role


class AccountRoles(_RoleSet):
    """Installer, support, worker (and classic control plane) roles."""

    def __init__(
        self,
        name: str,
        bindings: list[RoleBinding],
        provider: aws.Provider | None = None,
        depends_on: list[pulumi.Resource] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__(
            "cluster-identity:iam:AccountRoles", name, bindings, provider, depends_on, opts
        )

        self.register_outputs(
            {
                "role_arns": self.arns,
            }
        )


class OperatorRoles(_RoleSet):
    """Cluster-scoped operator roles federated to the cluster's OIDC provider.

    When the OIDC endpoint is created in the same update, trust documents are
    rendered once the host is known.
    """

    def __init__(
        self,
        name: str,
        bindings: list[RoleBinding],
        cluster_variant: ClusterVariant,
        partition: str,
        account_id: str,
        oidc_host: Optional[pulumi.Output[str]] = None,
        provider: aws.Provider | None = None,
        depends_on: list[pulumi.Resource] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        self._specs: dict[str, OperatorRoleSpec] = {
            spec.key: spec for spec in operator_role_catalog(cluster_variant)
        }
        self._partition = partition
        self._account_id = account_id
        self._oidc_host = oidc_host

        super().__init__(
            "cluster-identity:iam:OperatorRoles", name, bindings, provider, depends_on, opts
        )

        self.register_outputs(
            {
                "role_arns": self.arns,
            }
        )

    def _trust_policy(self, binding: RoleBinding) -> pulumi.Input[str]:
        if binding.trust_policy is not None:
            return json.dumps(binding.trust_policy, sort_keys=True)
        if self._oidc_host is None:
            raise ValueError(f"Operator role {binding.role_name} needs the OIDC host")

        spec = self._specs[binding.logical_name]
        return self._oidc_host.apply(
            lambda host: json.dumps(
                build_operator_trust_policy(spec, self._partition, self._account_id, host),
                sort_keys=True,
            )
        )
