"""OIDC identity lifecycle.

    unconfigured --create_managed------> managed_ready
    unconfigured --register_unmanaged--> unmanaged_pending --provider_created--> unmanaged_ready
    unconfigured --reference_external--> external_referenced

Creation requested: the endpoint is unknown until the cluster manager returns
it, so the plan carries a target state and no endpoint. Creation not requested:
the IAM provider for the supplied endpoint must already exist.
"""

import logging
from enum import Enum
from typing import Optional

from api.models import (
    IdentityConfigResolved,
    IssueKind,
    OIDCIdentity,
    OidcMode,
    OidcState,
    PreflightIssue,
    Provenance,
    RoleBinding,
)
from api.services.iam_discovery import PrincipalDirectory
from api.services.policy_binder import oidc_provider_arn

logger = logging.getLogger(__name__)


class OidcEvent(str, Enum):
    CREATE_MANAGED = "create_managed"
    REGISTER_UNMANAGED = "register_unmanaged"
    PROVIDER_CREATED = "provider_created"
    REFERENCE_EXTERNAL = "reference_external"


TRANSITIONS: dict[tuple[OidcState, OidcEvent], OidcState] = {
    (OidcState.UNCONFIGURED, OidcEvent.CREATE_MANAGED): OidcState.MANAGED_READY,
    (OidcState.UNCONFIGURED, OidcEvent.REGISTER_UNMANAGED): OidcState.UNMANAGED_PENDING,
    (OidcState.UNMANAGED_PENDING, OidcEvent.PROVIDER_CREATED): OidcState.UNMANAGED_READY,
    (OidcState.UNCONFIGURED, OidcEvent.REFERENCE_EXTERNAL): OidcState.EXTERNAL_REFERENCED,
}


def advance(state: OidcState, event: OidcEvent) -> OidcState:
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"OIDC identity cannot go from {state.value} on {event.value}") from None


def strip_scheme(url: str) -> str:
    return url.replace("https://", "").rstrip("/")


class OidcProvisioner:
    def __init__(self, directory: PrincipalDirectory):
        self.directory = directory

    def plan(self, config: IdentityConfigResolved) -> tuple[OIDCIdentity, list[PreflightIssue]]:
        oidc = config.oidc

        if not oidc.create:
            return self._reference_external(config)

        if oidc.mode == OidcMode.MANAGED:
            return (
                OIDCIdentity(
                    mode=OidcMode.MANAGED,
                    state=advance(OidcState.UNCONFIGURED, OidcEvent.CREATE_MANAGED),
                    create=True,
                ),
                [],
            )

        return (
            OIDCIdentity(
                mode=OidcMode.UNMANAGED,
                state=advance(OidcState.UNCONFIGURED, OidcEvent.REGISTER_UNMANAGED),
                create=True,
                endpoint_url=oidc.issuer_url,
                secret_ref=oidc.secret_ref,
            ),
            [],
        )

    def _reference_external(
        self, config: IdentityConfigResolved
    ) -> tuple[OIDCIdentity, list[PreflightIssue]]:
        oidc = config.oidc
        host = strip_scheme(oidc.endpoint_url)
        arn = oidc_provider_arn(config.partition.value, config.account_id, host)

        provider = self.directory.get_oidc_provider(arn)
        if provider is None:
            return (
                OIDCIdentity(mode=oidc.mode, create=False, endpoint_url=oidc.endpoint_url),
                [
                    PreflightIssue(
                        kind=IssueKind.MISSING_PREREQUISITE,
                        identifier=arn,
                        message=f"No IAM OIDC provider exists for {oidc.endpoint_url}",
                        remediation=[
                            f"Create the IAM OIDC provider for {host}",
                            "Enable oidc.create to provision a new OIDC configuration",
                        ],
                    )
                ],
            )

        logger.info("Referencing existing OIDC provider %s", arn)
        return (
            OIDCIdentity(
                mode=oidc.mode,
                state=advance(OidcState.UNCONFIGURED, OidcEvent.REFERENCE_EXTERNAL),
                create=False,
                endpoint_url=oidc.endpoint_url,
                thumbprint=provider.thumbprints[0] if provider.thumbprints else None,
                config_id=oidc.config_id,
                provider_ref=arn,
            ),
            [],
        )


def bind_bootstrap_role(
    identity: OIDCIdentity,
    installer: Optional[RoleBinding],
) -> tuple[OIDCIdentity, list[PreflightIssue]]:
    """Unmanaged registration is performed with an installer role that already exists."""
    if identity.mode != OidcMode.UNMANAGED or not identity.create:
        return identity, []

    if installer is None or installer.provenance == Provenance.CREATED:
        identifier = installer.resolved_identifier if installer else "installer"
        return identity, [
            PreflightIssue(
                kind=IssueKind.TOPOLOGY_CONFLICT,
                identifier=identifier,
                message=(
                    "Unmanaged OIDC registration needs a pre-existing installer role, "
                    "but the installer role is being created in the same pass"
                ),
                remediation=[
                    "Create the account roles first, then run this deployment in discovery mode",
                    "Supply an explicit installer role reference",
                    "Switch to managed OIDC",
                ],
            )
        ]

    return identity.model_copy(update={"bootstrap_role_ref": installer.resolved_identifier}), []
