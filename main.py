import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from library_api import database
from library_api.config import settings
from library_api.crud import ensure_admin
from library_api.errors import register_exception_handlers
from library_api.routes import router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.init_db()
    if settings.admin_username and settings.admin_password:
        db = database.SessionLocal()
        try:
            ensure_admin(db, settings.admin_username, settings.admin_password)
        finally:
            db.close()
    logger.info("%s %s started (%s)", settings.app_name, settings.app_version, settings.environment)
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

register_exception_handlers(app)
app.include_router(router)


@app.get("/health")
def health():
    return {
        "status": "OK",
        "message": "Library API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
    }


@app.get("/")
def index():
    return {
        "message": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "endpoints": {
            "auth": "/auth",
            "books": "/books",
            "users": "/users",
            "loans": "/loans",
            "health": "/health",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)
