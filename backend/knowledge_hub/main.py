
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_hub.core.api.deps import build_services
from knowledge_hub.core.api.v1 import chat, knowledge_bases, mcp
from knowledge_hub.core.config import get_settings
from knowledge_hub.core.exceptions import KnowledgeHubError
from knowledge_hub.core.logging import RequestLoggingMiddleware, setup_logging
from knowledge_hub.database.postgre import SessionLocal, get_db, init_models

# Rate Limiting
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from knowledge_hub.core.rate_limit import limiter

settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

# Đăng ký Limiter vào App state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# Set up CORS
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(KnowledgeHubError)
async def knowledge_hub_error_handler(request: Request, exc: KnowledgeHubError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Include Routers
app.include_router(knowledge_bases.router, prefix=f"{settings.API_V1_STR}/knowledge-bases", tags=["Knowledge Bases"])
app.include_router(chat.router, prefix=f"{settings.API_V1_STR}/chat", tags=["Chat"])
app.include_router(mcp.router, prefix="/mcp", tags=["MCP"])


@app.on_event("startup")
async def startup_event():
    # Tạo extension + bảng nếu chưa tồn tại
    await init_models()
    app.state.services = build_services(settings, SessionLocal)
    logger.info("Knowledge Hub ready (generation=%s, embedding=%s)", settings.GENERATION_PROVIDER, settings.EMBEDDING_MODEL)


@app.get("/")
async def root():
    return {"message": "Welcome to Knowledge Hub API"}


@app.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return {"status": "ok"}
