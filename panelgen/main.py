from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from panelgen.config import config
from panelgen.features.characters.router import router as characters_router
from panelgen.features.panels.router import router as panels_router
from panelgen.features.revisions.router import router as revisions_router
from panelgen.logger import get_logger
from panelgen.services import build_services

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # tests install their own services before startup
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = build_services(config)
    try:
        yield
    finally:
        if owned:
            await app.state.services.aclose()
            app.state.services = None


app = FastAPI(title="Panel Pipeline API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins,
    allow_credentials="*" not in config.allowed_origins,  # browsers reject credentials with "*"
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(panels_router)
app.include_router(revisions_router)
app.include_router(characters_router)


@app.get("/healthz")
async def healthz():
    return {"ok": True}
