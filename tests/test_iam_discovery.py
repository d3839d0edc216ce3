from datetime import datetime, timezone

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from api.services.iam_discovery import DiscoveryCredentialsError, IamDiscovery
from api.settings import Settings

ROLE_NAME = "ManagedOpenShift-HCP-ROSA-Worker-Role"
ROLE_ARN = f"arn:aws:iam::123456789012:role/{ROLE_NAME}"
POLICY_ARN = "arn:aws:iam::aws:policy/service-role/ROSAWorkerInstancePolicy"
PROVIDER_ARN = "arn:aws:iam::123456789012:oidc-provider/oidc.example.com/abc"


@pytest.fixture
def iam():
    client = boto3.client(
        "iam",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


def _role_response(tags=None):
    role = {
        "Path": "/",
        "RoleName": ROLE_NAME,
        "RoleId": "AROAEXAMPLEROLEID12345",
        "Arn": ROLE_ARN,
        "CreateDate": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    if tags:
        role["Tags"] = tags
    return {"Role": role}


def test_get_role_collects_policies_and_tags(iam):
    client, stubber = iam
    stubber.add_response(
        "get_role",
        _role_response([{"Key": "cluster-identity/owner", "Value": "demo"}]),
        {"RoleName": ROLE_NAME},
    )
    stubber.add_response(
        "list_attached_role_policies",
        {
            "AttachedPolicies": [{"PolicyName": "ROSAWorkerInstancePolicy", "PolicyArn": POLICY_ARN}],
            "IsTruncated": False,
        },
        {"RoleName": ROLE_NAME},
    )

    principal = IamDiscovery(client).get_role(ROLE_NAME)

    assert principal.arn == ROLE_ARN
    assert principal.attached_policy_arns == frozenset({POLICY_ARN})
    assert principal.tags == {"cluster-identity/owner": "demo"}


def test_missing_role_is_none(iam):
    client, stubber = iam
    stubber.add_client_error(
        "get_role",
        service_error_code="NoSuchEntity",
        http_status_code=404,
        expected_params={"RoleName": ROLE_NAME},
    )

    assert IamDiscovery(client).get_role(ROLE_NAME) is None


def test_other_errors_propagate(iam):
    client, stubber = iam
    stubber.add_client_error("get_role", service_error_code="AccessDenied", http_status_code=403)

    with pytest.raises(ClientError):
        IamDiscovery(client).get_role(ROLE_NAME)


def test_get_oidc_provider(iam):
    client, stubber = iam
    stubber.add_response(
        "get_open_id_connect_provider",
        {
            "Url": "oidc.example.com/abc",
            "ClientIDList": ["openshift", "sts.amazonaws.com"],
            "ThumbprintList": ["9e99a48a9960b14926bb7f3b02e22da2b0ab7280"],
        },
        {"OpenIDConnectProviderArn": PROVIDER_ARN},
    )

    provider = IamDiscovery(client).get_oidc_provider(PROVIDER_ARN)

    assert provider.thumbprints == ("9e99a48a9960b14926bb7f3b02e22da2b0ab7280",)
    assert provider.client_ids == ("openshift", "sts.amazonaws.com")


def test_missing_oidc_provider_is_none(iam):
    client, stubber = iam
    stubber.add_client_error("get_open_id_connect_provider", service_error_code="NoSuchEntity")

    assert IamDiscovery(client).get_oidc_provider(PROVIDER_ARN) is None


def test_refused_discovery_role_is_a_credentials_error(monkeypatch):
    sts = boto3.client(
        "sts",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    monkeypatch.setattr(boto3, "client", lambda service, **kwargs: sts)
    settings = Settings(discovery_role_arn="arn:aws:iam::123456789012:role/discovery")

    with Stubber(sts) as stubber:
        stubber.add_client_error("assume_role", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(DiscoveryCredentialsError, match="Failed to assume role"):
            IamDiscovery.from_settings(settings, "us-east-1")
