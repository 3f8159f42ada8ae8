from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from contextlib import asynccontextmanager
import logging
import os

from app.core.config import get_settings
from app.core.database import check_database_connection, get_session_factory
from app.routers import (
    ai,
    assessments,
    attempts,
    auth,
    dashboard,
    disputes,
    domains,
    groups,
    institutions,
    models,
    results,
    skills,
    sources,
    student,
    users,
)
from app.services.llm.base import LLMError


settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    os.makedirs(settings.upload_dir, exist_ok=True)
    logger.info("[Startup] Upload directory: %s", os.path.abspath(settings.upload_dir))
    yield


app = FastAPI(
    title="Inteliexam API",
    description="AI-assisted skill assessment through guided conversations",
    version="1.0.0",
    lifespan=lifespan,
)
# Avoid 307 redirects for trailing slash (e.g. /groups/ -> /groups) that can cause redirect loops behind nginx
app.router.redirect_slashes = False

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:5173",
        "http://localhost",
        "http://127.0.0.1",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LLMError)
async def llm_error_handler(request: Request, exc: LLMError):
    logger.error("[AI] %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "The AI service is unavailable, please try again later"},
    )


@app.exception_handler(OperationalError)
async def database_error_handler(request: Request, exc: OperationalError):
    logger.error("[DB] %s %s failed: %s", request.method, request.url.path, exc.__class__.__name__)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "The database is temporarily unavailable"},
    )


# Include routers
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(institutions.router, prefix="/institutions", tags=["Institutions"])
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(groups.router, prefix="/groups", tags=["Groups"])
app.include_router(domains.router, prefix="/domains", tags=["Domains"])
app.include_router(skills.router, prefix="/skills", tags=["Skills"])
app.include_router(sources.router, prefix="/sources", tags=["Sources"])
app.include_router(assessments.router, prefix="/assessments", tags=["Assessments"])
app.include_router(student.router, prefix="/student", tags=["Student"])
app.include_router(attempts.router, prefix="/attempts", tags=["Attempts"])
app.include_router(results.router, prefix="/results", tags=["Results"])
app.include_router(disputes.router, prefix="/disputes", tags=["Disputes"])
app.include_router(dashboard.router, prefix="/dashboard", tags=["Dashboard"])
app.include_router(ai.router, prefix="/ai", tags=["AI"])
app.include_router(models.router, prefix="/models", tags=["Models"])


@app.get("/health")
async def health_check(session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)):
    if not await check_database_connection(session_factory):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unreachable"},
        )
    return {"status": "healthy", "database": "ok"}
