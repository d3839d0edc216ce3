import pulumi
import pulumi_aws as aws

from api.models import IdentityConfigResolved
from infra.config import PulumiIdentityConfig


def create_identity_aws_provider(
    config: PulumiIdentityConfig,
    resolved: IdentityConfigResolved,
) -> aws.Provider:
    """AWS provider for the target account, assuming the deployment role when one is set."""

    default_tags = {
        "ManagedBy": "Pulumi",
        "Cluster": resolved.cluster_name,
        "Stack": pulumi.get_stack(),
    }

    all_tags = {**default_tags, **resolved.tags}

    assume_roles = None
    if config.deployment_role_arn:
        assume_roles = [
            aws.ProviderAssumeRoleArgs(
                role_arn=config.deployment_role_arn,
                external_id=config.external_id,
                session_name=f"pulumi-{pulumi.get_stack()}",
                duration="1h",
            )
        ]

    return aws.Provider(
        "identity-aws",
        region=resolved.region,
        allowed_account_ids=[resolved.account_id],
        assume_roles=assume_roles,
        default_tags=aws.ProviderDefaultTagsArgs(
            tags=all_tags,
        ),
    )
