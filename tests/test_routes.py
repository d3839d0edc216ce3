import pytest
from fastapi.testclient import TestClient

from api.database import Database, get_db
from api.main import app
from api.routes.plans import get_directory_factory
from api.services.iam_discovery import DiscoveryCredentialsError
from tests.conftest import ACCOUNT_ID, COMMERCIAL_REGISTRY, FakeDirectory


@pytest.fixture
def fake_directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def client(tmp_path, fake_directory):
    database = Database(f"sqlite:///{tmp_path}/plans.db")
    app.dependency_overrides[get_db] = lambda: database
    app.dependency_overrides[get_directory_factory] = lambda: (lambda region: fake_directory)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _body(**overrides):
    body = {
        "cluster_name": "demo",
        "account_id": ACCOUNT_ID,
        "region": "us-east-1",
        "policy_registry": COMMERCIAL_REGISTRY,
        "account_roles": {"create": True},
    }
    body.update(overrides)
    return body


def _discoverable(directory: FakeDirectory):
    for suffix, policy in [
        ("Installer", "ROSAInstallerPolicy"),
        ("Support", "ROSASRESupportPolicy"),
        ("Worker", "ROSAWorkerInstancePolicy"),
    ]:
        directory.add_role(
            f"ManagedOpenShift-HCP-ROSA-{suffix}-Role",
            [f"arn:aws:iam::aws:policy/service-role/{policy}"],
        )


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_create_plan(client):
    response = client.post("/api/v1/plans", json=_body())

    assert response.status_code == 201
    data = response.json()
    assert data["cluster_name"] == "demo"
    assert data["oidc_state"] == "managed_ready"
    assert data["cluster_key_ref"] is None
    assert data["role_map"]["installer"]["provenance"] == "created"
    assert len(data["role_map"]) == 11


def test_missing_prerequisite_is_424(client):
    response = client.post("/api/v1/plans", json=_body(account_roles={"create": False}))

    assert response.status_code == 424
    data = response.json()
    assert data["error"] == "missing_prerequisite"
    assert {i["identifier"] for i in data["issues"]} == {
        "ManagedOpenShift-HCP-ROSA-Installer-Role",
        "ManagedOpenShift-HCP-ROSA-Support-Role",
        "ManagedOpenShift-HCP-ROSA-Worker-Role",
    }


def test_policy_drift_is_409(client, fake_directory):
    fake_directory.add_role(
        "demo-openshift-ingress-operator-cloud-credentials",
        ["arn:aws:iam::aws:policy/AdministratorAccess"],
    )

    response = client.post("/api/v1/plans", json=_body())

    assert response.status_code == 409
    assert response.json()["error"] == "policy_drift"


def test_invalid_reference_is_400(client):
    response = client.post(
        "/api/v1/plans",
        json=_body(encryption={"cluster_key": {"mode": "customer_supplied", "key_ref": "bogus"}}),
    )

    assert response.status_code == 400
    issue = response.json()["issues"][0]
    assert issue["kind"] == "invalid_reference"
    assert issue["remediation"]


def test_request_schema_is_enforced(client):
    response = client.post("/api/v1/plans", json=_body(cluster_name="Not_Valid"))

    assert response.status_code == 422


def test_get_plan(client):
    assert client.get("/api/v1/plans/demo").status_code == 404

    client.post("/api/v1/plans", json=_body())
    response = client.get("/api/v1/plans/demo")

    assert response.status_code == 200
    assert response.json()["summary"]["cluster_name"] == "demo"


def test_destroy_set_only_holds_owned_cluster_entities(client, fake_directory):
    _discoverable(fake_directory)
    client.post(
        "/api/v1/plans",
        json=_body(
            account_roles={"create": False},
            encryption={"infrastructure_key": {"mode": "customer_created"}},
        ),
    )

    response = client.get("/api/v1/plans/demo/destroy-set")

    assert response.status_code == 200
    data = response.json()
    kinds = [e["kind"] for e in data["entities"]]
    assert data["total"] == 11
    assert kinds[0] == "kms_key"
    assert kinds[-2:] == ["oidc_provider", "oidc_config"]
    assert "account_role" not in kinds
    assert all(e["provenance"] == "created" for e in data["entities"])


def test_destroy_set_with_shared_roles(client):
    client.post("/api/v1/plans", json=_body())

    default = client.get("/api/v1/plans/demo/destroy-set").json()
    everything = client.get("/api/v1/plans/demo/destroy-set", params={"include_shared": True}).json()

    assert default["total"] == 10
    assert everything["total"] == 13


def test_replanning_replaces_the_ledger(client, fake_directory):
    client.post("/api/v1/plans", json=_body())
    client.post("/api/v1/plans", json=_body(operator_roles={"create": True}))

    assert client.get("/api/v1/plans/demo/destroy-set").json()["total"] == 10


def test_delete_plan(client):
    client.post("/api/v1/plans", json=_body())

    assert client.delete("/api/v1/plans/demo").status_code == 204
    assert client.delete("/api/v1/plans/demo").status_code == 404
    assert client.get("/api/v1/plans/demo/destroy-set").status_code == 404


def _failing_factory(error: Exception):
    def factory(region):
        raise error

    return factory


def test_discovery_credentials_failure_is_503(client):
    app.dependency_overrides[get_directory_factory] = lambda: _failing_factory(
        DiscoveryCredentialsError("Failed to assume role arn:aws:iam::123456789012:role/discovery")
    )

    response = client.post("/api/v1/plans", json=_body())

    assert response.status_code == 503
    assert "Failed to assume role" in response.json()["detail"]


def test_planning_bugs_are_not_reported_as_credential_failures(client):
    app.dependency_overrides[get_directory_factory] = lambda: _failing_factory(
        ValueError("OIDC identity cannot go from managed_ready on provider_created")
    )

    with pytest.raises(ValueError, match="OIDC identity cannot go"):
        client.post("/api/v1/plans", json=_body())
