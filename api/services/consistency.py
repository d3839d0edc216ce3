"""Checks that run against live principals before anything is mutated."""

from typing import Iterable, Optional

from api.models import IssueKind, PreflightIssue
from api.services.iam_discovery import ExistingPrincipal
from api.services.policy_binder import OWNER_TAG


def is_owned(existing: ExistingPrincipal, owner_id: str) -> bool:
    return existing.tags.get(OWNER_TAG) == owner_id


def check_policy_drift(
    existing: ExistingPrincipal,
    expected_policies: Iterable[str],
) -> Optional[PreflightIssue]:
    """Attached policy set must equal the catalog set exactly. Never auto-corrected."""
    expected = frozenset(expected_policies)
    if existing.attached_policy_arns == expected:
        return None

    missing = sorted(expected - existing.attached_policy_arns)
    unexpected = sorted(existing.attached_policy_arns - expected)
    details = []
    if missing:
        details.append(f"missing {', '.join(missing)}")
    if unexpected:
        details.append(f"unexpected {', '.join(unexpected)}")

    return PreflightIssue(
        kind=IssueKind.POLICY_DRIFT,
        identifier=existing.arn,
        message=f"Attached policies of {existing.role_name} drifted from the catalog: {'; '.join(details)}",
        remediation=[
            f"Upgrade the role explicitly so it carries exactly: {', '.join(sorted(expected))}",
            f"Delete {existing.role_name} and let it be recreated",
            "Re-run the shared account-role workflow",
        ],
    )


def check_duplicate(existing: ExistingPrincipal, owner_id: str) -> Optional[PreflightIssue]:
    """A role we were asked to create already exists and belongs to someone else."""
    if is_owned(existing, owner_id):
        return None

    current_owner = existing.tags.get(OWNER_TAG)
    owner_note = f" (owned by '{current_owner}')" if current_owner else ""
    return PreflightIssue(
        kind=IssueKind.DUPLICATE_RESOURCE,
        identifier=existing.arn,
        message=f"Role {existing.role_name} already exists{owner_note}; refusing to create it",
        remediation=[
            "Switch to discovery mode (create=false) to reuse the existing role",
            f"Delete {existing.role_name} before creating it here",
        ],
    )
