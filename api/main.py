"""FastAPI application for the bootctl cluster controller."""

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI

from api.routes.clusters import router as clusters_router
from api.routes.machine_pools import router as machine_pools_router
from api.routes.webhooks import router as webhooks_router

app = FastAPI(
    title="bootctl controller",
    description="Bootstrap single-master Kubernetes clusters on AWS "
    "and keep their worker pools at the desired size.",
    version="0.1.0",
)

app.include_router(clusters_router)
app.include_router(machine_pools_router)
app.include_router(webhooks_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
