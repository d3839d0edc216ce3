from dataclasses import dataclass
from typing import Any, Optional

import httpx

from api.models import CloudPartition
from api.settings import Settings

OIDC_CONFIGS_PATH = "/api/clusters_mgmt/v1/oidc_configs"


@dataclass(frozen=True)
class OidcConfigRecord:
    id: str
    issuer_url: str
    managed: bool


def cluster_manager_url(settings: Settings, partition: CloudPartition) -> str:
    """Regulated-partition clusters are managed from a separate endpoint."""
    if partition == CloudPartition.REGULATED:
        return settings.cluster_manager_govcloud_url
    return settings.cluster_manager_url


class ClusterManagerClient:
    """Client for the cluster-manager OIDC configuration API.

    Synchronous; called from Pulumi dynamic providers outside any event loop.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            headers=self.headers,
            transport=self.transport,
            timeout=self.timeout,
        )

    @staticmethod
    def _record(payload: dict[str, Any]) -> OidcConfigRecord:
        return OidcConfigRecord(
            id=payload["id"],
            issuer_url=payload["issuer_url"].rstrip("/"),
            managed=bool(payload.get("managed", True)),
        )

    def create_oidc_config(
        self,
        managed: bool = True,
        secret_arn: Optional[str] = None,
        issuer_url: Optional[str] = None,
        installer_role_arn: Optional[str] = None,
    ) -> OidcConfigRecord:
        """Register an OIDC configuration. Unmanaged ones need all three references."""
        body: dict[str, Any] = {"managed": managed}
        if not managed:
            if not (secret_arn and issuer_url and installer_role_arn):
                raise ValueError(
                    "Unmanaged OIDC configs need secret_arn, issuer_url and installer_role_arn"
                )
            body.update(
                {
                    "secret_arn": secret_arn,
                    "issuer_url": issuer_url,
                    "installer_role_arn": installer_role_arn,
                }
            )

        with self._client() as client:
            response = client.post(OIDC_CONFIGS_PATH, json=body)
            response.raise_for_status()
            return self._record(response.json())

    def get_oidc_config(self, config_id: str) -> Optional[OidcConfigRecord]:
        with self._client() as client:
            response = client.get(f"{OIDC_CONFIGS_PATH}/{config_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return self._record(response.json())

    def delete_oidc_config(self, config_id: str) -> None:
        """Delete a configuration; already-gone counts as deleted."""
        with self._client() as client:
            response = client.delete(f"{OIDC_CONFIGS_PATH}/{config_id}")
            if response.status_code == 404:
                return
            response.raise_for_status()
