"""Decides, per role, whether to reference, discover or create it."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from api.models import IssueKind, PreflightIssue, Provenance, RoleBinding
from api.services.consistency import check_duplicate, check_policy_drift
from api.services.iam_discovery import PrincipalDirectory
from api.services.policy_binder import RoleRequest

logger = logging.getLogger(__name__)

Resolution = tuple[Optional[RoleBinding], list[PreflightIssue]]


def _binding(request: RoleRequest, identifier: str, provenance: Provenance, **overrides) -> RoleBinding:
    values = {
        "kind": request.kind,
        "logical_name": request.logical_name,
        "role_name": request.role_name,
        "resolved_identifier": identifier,
        "scope": request.scope,
        "trust_principal": request.trust_principal,
        "policy_refs": list(request.expected_policies),
        "trust_policy": request.trust_policy,
        "path": request.path,
        "permissions_boundary": request.permissions_boundary,
        "tags": dict(request.tags),
        "provenance": provenance,
    }
    values.update(overrides)
    return RoleBinding(**values)


class ResolutionStrategy(ABC):
    @abstractmethod
    def resolve(self, request: RoleRequest, directory: PrincipalDirectory) -> Resolution:
        """Return the binding, or the issues that prevent one."""


class ExplicitReference(ResolutionStrategy):
    """Caller-supplied ARN. Not looked up and never owned."""

    def __init__(self, arn: str):
        self.arn = arn

    def resolve(self, request: RoleRequest, directory: PrincipalDirectory) -> Resolution:
        role_name = self.arn.rsplit("/", 1)[-1]
        return (
            _binding(
                request,
                self.arn,
                Provenance.EXPLICIT,
                role_name=role_name,
                policy_refs=[],
                trust_policy=None,
                tags={},
            ),
            [],
        )


class DiscoverExisting(ResolutionStrategy):
    """Read-only lookup by deterministic name."""

    def resolve(self, request: RoleRequest, directory: PrincipalDirectory) -> Resolution:
        existing = directory.get_role(request.role_name)
        if existing is None:
            return None, [
                PreflightIssue(
                    kind=IssueKind.MISSING_PREREQUISITE,
                    identifier=request.role_name,
                    message=f"Expected role {request.role_name} ({request.identifier}) does not exist",
                    remediation=[
                        f"Create {request.role_name} with the shared account-role workflow",
                        "Enable role creation for this deployment",
                        "Supply an explicit role reference",
                    ],
                )
            ]

        drift = check_policy_drift(existing, request.expected_policies)
        if drift:
            return None, [drift]

        return (
            _binding(
                request,
                existing.arn,
                Provenance.DISCOVERED,
                policy_refs=sorted(existing.attached_policy_arns),
                trust_policy=None,
                tags=dict(existing.tags),
            ),
            [],
        )


class CreateIfAbsent(ResolutionStrategy):
    """Plan creation; a re-application of our own role keeps provenance=created."""

    def resolve(self, request: RoleRequest, directory: PrincipalDirectory) -> Resolution:
        existing = directory.get_role(request.role_name)
        if existing is None:
            return _binding(request, request.identifier, Provenance.CREATED), []

        drift = check_policy_drift(existing, request.expected_policies)
        if drift:
            return None, [drift]

        duplicate = check_duplicate(existing, request.owner_id)
        if duplicate:
            return None, [duplicate]

        logger.info("Role %s already owned by %s, re-applying", request.role_name, request.owner_id)
        return _binding(request, existing.arn, Provenance.CREATED), []


def select_strategy(explicit_ref: Optional[str], creation_requested: bool) -> ResolutionStrategy:
    if explicit_ref:
        return ExplicitReference(explicit_ref)
    if creation_requested:
        return CreateIfAbsent()
    return DiscoverExisting()


class RoleResolver:
    """Resolves a set of role requests against one principal directory."""

    def __init__(self, directory: PrincipalDirectory):
        self.directory = directory

    def resolve(
        self,
        requests: list[RoleRequest],
        explicit_refs: dict[str, str],
        creation_requested: bool,
    ) -> tuple[list[RoleBinding], list[PreflightIssue]]:
        """Bindings in catalog order. Issues from every role are collected."""
        bindings: list[RoleBinding] = []
        issues: list[PreflightIssue] = []

        for request in requests:
            strategy = select_strategy(explicit_refs.get(request.logical_name), creation_requested)
            binding, request_issues = strategy.resolve(request, self.directory)
            issues.extend(request_issues)
            if binding:
                logger.debug(
                    "Resolved %s -> %s (%s)",
                    request.logical_name,
                    binding.resolved_identifier,
                    binding.provenance.value,
                )
                bindings.append(binding)

        return bindings, issues
