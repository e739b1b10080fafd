import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from reelscan.routes import api
from reelscan.routes import config as config_api
from reelscan.services.compositions import shutdown_composition_service


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    await shutdown_composition_service()


app = FastAPI(title="Reelscan Composition Discovery", lifespan=lifespan)
app.include_router(api.router)
app.include_router(config_api.router)


@app.get("/")
async def root() -> RedirectResponse:
    """Redirect visitors to the interactive API documentation."""
    return RedirectResponse(url="/docs", status_code=303)


def run() -> None:
    """Serve the API with uvicorn; host and port come from REELSCAN_HOST / REELSCAN_PORT."""
    uvicorn.run(
        app,
        host=os.environ.get("REELSCAN_HOST", "127.0.0.1"),
        port=int(os.environ.get("REELSCAN_PORT", "8000")),
    )
