"""Read-only planning pass. Everything fatal is raised here, before any mutation."""

import logging

from api.config_resolver import resolve_identity_config
from api.models import (
    AccountRoleType,
    IdentityConfigInput,
    IdentityConfigResolved,
    PreflightIssue,
    ProvisioningPlan,
    RoleBinding,
)
from api.services.iam_discovery import PrincipalDirectory
from api.services.key_domains import build_key_domains
from api.services.oidc_provisioner import OidcProvisioner, bind_bootstrap_role
from api.services.policy_binder import build_account_role_requests, build_operator_role_requests
from api.services.role_resolver import RoleResolver
from api.validation import raise_for_issues, validate_config

logger = logging.getLogger(__name__)

DEFAULT_PROPAGATION_DELAY_SECONDS = 30


def _installer(bindings: list[RoleBinding]):
    for binding in bindings:
        if binding.logical_name == AccountRoleType.INSTALLER.value:
            return binding
    return None


class PreflightService:
    def __init__(
        self,
        directory: PrincipalDirectory,
        propagation_delay_seconds: int = DEFAULT_PROPAGATION_DELAY_SECONDS,
    ):
        self.directory = directory
        self.propagation_delay_seconds = propagation_delay_seconds
        self.resolver = RoleResolver(directory)
        self.oidc = OidcProvisioner(directory)

    def run(self, input_config: IdentityConfigInput) -> ProvisioningPlan:
        config = resolve_identity_config(input_config)
        return self.plan(config)

    def plan(self, config: IdentityConfigResolved) -> ProvisioningPlan:
        """Build the plan for a resolved configuration or raise a ProvisioningError."""
        logger.info(
            "Preflight for %s (%s, %s)",
            config.cluster_name,
            config.cluster_variant.value,
            config.partition.value,
        )
        validate_config(config)

        issues: list[PreflightIssue] = []

        oidc, oidc_issues = self.oidc.plan(config)
        issues.extend(oidc_issues)

        account_requests, request_issues = build_account_role_requests(config)
        issues.extend(request_issues)
        account_roles, role_issues = self.resolver.resolve(
            account_requests,
            {k.value: v for k, v in config.account_roles.explicit_refs.items()},
            config.account_roles.create,
        )
        issues.extend(role_issues)

        operator_requests, request_issues = build_operator_role_requests(config, oidc.host)
        issues.extend(request_issues)
        operator_roles, role_issues = self.resolver.resolve(
            operator_requests,
            config.operator_roles.explicit_refs,
            config.operator_roles.create,
        )
        issues.extend(role_issues)

        oidc, bootstrap_issues = bind_bootstrap_role(oidc, _installer(account_roles))
        issues.extend(bootstrap_issues)

        if issues:
            logger.warning(
                "Preflight for %s failed with %d issue(s)", config.cluster_name, len(issues)
            )
            raise_for_issues(issues)

        key_domains, key_issues = build_key_domains(config, account_roles, operator_roles)
        raise_for_issues(key_issues)

        plan = ProvisioningPlan(
            cluster_name=config.cluster_name,
            topology=config,
            oidc=oidc,
            account_roles=account_roles,
            operator_roles=operator_roles,
            key_domains=key_domains,
            propagation_delay_seconds=self.propagation_delay_seconds,
        )

        summary = plan.summary()
        logger.info(
            "Preflight for %s passed: %d created, %d discovered, %d supplied",
            config.cluster_name,
            len(summary.created),
            len(summary.discovered),
            len(summary.supplied),
        )
        return plan
