"""Provisioning plan endpoints."""

import asyncio
import logging
from typing import Callable, Union

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from api.database import Database, get_db
from api.models import (
    DestroySetResponse,
    IdentityConfigInput,
    IssueKind,
    PlanResponse,
    PreflightErrorResponse,
)
from api.services.iam_discovery import DiscoveryCredentialsError, IamDiscovery, PrincipalDirectory
from api.services.preflight import PreflightService
from api.settings import get_settings
from api.validation import ProvisioningError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/plans", tags=["plans"])

STATUS_BY_KIND: dict[IssueKind, int] = {
    IssueKind.DUPLICATE_RESOURCE: status.HTTP_409_CONFLICT,
    IssueKind.POLICY_DRIFT: status.HTTP_409_CONFLICT,
    IssueKind.MISSING_PREREQUISITE: status.HTTP_424_FAILED_DEPENDENCY,
    IssueKind.INVALID_REFERENCE: status.HTTP_400_BAD_REQUEST,
    IssueKind.TOPOLOGY_CONFLICT: status.HTTP_400_BAD_REQUEST,
}

DirectoryFactory = Callable[[str], PrincipalDirectory]


def get_directory_factory() -> DirectoryFactory:
    """Read-only IAM lookups for the request's region."""
    settings = get_settings()
    return lambda region: IamDiscovery.from_settings(settings, region)


def _run_preflight(request: IdentityConfigInput, directory_factory: DirectoryFactory):
    settings = get_settings()
    service = PreflightService(
        directory_factory(request.region),
        propagation_delay_seconds=settings.propagation_delay_seconds,
    )
    return service.run(request)


@router.post(
    "",
    response_model=PlanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Run preflight and record the plan",
    description="""Resolve roles, OIDC and keys for a cluster without mutating anything.""",
    responses={
        201: {"description": "Plan accepted"},
        400: {"model": PreflightErrorResponse, "description": "Invalid reference or topology conflict"},
        409: {"model": PreflightErrorResponse, "description": "Duplicate resource or policy drift"},
        424: {"model": PreflightErrorResponse, "description": "Missing prerequisite"},
    },
)
async def create_plan(
    request: IdentityConfigInput,
    directory_factory: DirectoryFactory = Depends(get_directory_factory),
    db: Database = Depends(get_db),
) -> Union[PlanResponse, JSONResponse]:
    """Run preflight for a cluster and store the accepted plan."""
    try:
        plan = await asyncio.to_thread(_run_preflight, request, directory_factory)
    except ProvisioningError as e:
        logger.info("Preflight rejected %s: %s", request.cluster_name, e)
        return JSONResponse(
            status_code=STATUS_BY_KIND[e.kind],
            content=e.to_response().model_dump(mode="json"),
        )
    except DiscoveryCredentialsError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    except (ClientError, BotoCoreError) as e:
        logger.exception("IAM discovery failed for %s", request.cluster_name)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"IAM discovery failed: {e}",
        ) from e

    record = db.save_plan(plan)
    response = PlanResponse.from_plan(plan)
    response.created_at = record.updated_at
    return response


@router.get(
    "/{cluster_name}",
    response_model=PlanResponse,
    summary="Get the stored plan",
)
async def get_plan(
    cluster_name: str,
    db: Database = Depends(get_db),
) -> PlanResponse:
    record = db.get_plan_record(cluster_name)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No plan recorded for cluster '{cluster_name}'",
        )

    response = PlanResponse.from_plan(db.get_plan(cluster_name))
    response.created_at = record.updated_at
    return response


@router.get(
    "/{cluster_name}/destroy-set",
    response_model=DestroySetResponse,
    summary="Entities a teardown would delete",
    description="""Owned entities in destroy order. Discovered and explicitly
    referenced entities are never part of it; shared roles only on request.""",
)
async def get_destroy_set(
    cluster_name: str,
    include_shared: bool = Query(default=False),
    db: Database = Depends(get_db),
) -> DestroySetResponse:
    if db.get_plan_record(cluster_name) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No plan recorded for cluster '{cluster_name}'",
        )

    entities = db.destroy_set(cluster_name, include_shared=include_shared)
    return DestroySetResponse(cluster_name=cluster_name, entities=entities, total=len(entities))


@router.delete(
    "/{cluster_name}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Forget a cluster's plan",
)
async def delete_plan(
    cluster_name: str,
    db: Database = Depends(get_db),
) -> None:
    if not db.delete_plan(cluster_name):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No plan recorded for cluster '{cluster_name}'",
        )
