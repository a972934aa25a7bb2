from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .routers import sync

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync.router)


@app.get("/healthz")
def healthz():
    return {
        "ok": True,
        "version": settings.app_version,
        "erpnext_configured": settings.erp_configured,
        "mattermost_configured": settings.mattermost_configured,
    }
