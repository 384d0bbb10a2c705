import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gitmemo.api.v1.api import api_router
from gitmemo.config import get_settings
from gitmemo.database import init_db
from gitmemo.exceptions import GitMemoError
from gitmemo.services.cache import StorageCache
from gitmemo.services.github_client import GitHubClient

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def make_github_client(token: str) -> GitHubClient:
    return GitHubClient(token, base_url=get_settings().github_api_url)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup."""
    await init_db()
    logger.info("Database tables created/verified")
    yield


app = FastAPI(
    title="GitMemo",
    description="Issue and label mirror of a GitHub repository with a local cache",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.cache = StorageCache()
app.state.remote_factory = make_github_client

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GitMemoError)
async def gitmemo_error_handler(request: Request, exc: GitMemoError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "message": exc.message},
    )


app.include_router(api_router)


@app.get("/")
async def health_check():
    return {"status": "ok"}
