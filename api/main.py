"""FastAPI application for cluster identity planning."""

import logging

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI

from api.routes.plans import router as plans_router
from api.settings import get_settings

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Cluster Identity Provisioner",
    description="Plan the IAM roles, OIDC identity and KMS keys a managed "
    "OpenShift cluster needs before it is created.",
    version="1.0.0",
)

app.include_router(plans_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
