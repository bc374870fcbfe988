from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import engine
from app.middleware.exceptions import register_exception_handlers
from app.middleware.rate_limit import RateLimitMiddleware
from app.routers import admin, clients, health, supervisor, users, visits
from app.utils.redis import close_redis


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="FieldVisit",
    description="Field-sales visit tracking with role-scoped access",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (outermost first) ─────────────────────────────
# Rate limiting runs before any route dependency touches the database.
app.add_middleware(
    RateLimitMiddleware,
    enabled=settings.rate_limit_enabled,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(clients.router, prefix="/api/clients", tags=["clients"])
app.include_router(visits.router, prefix="/api/visits", tags=["visits"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
app.include_router(supervisor.router, prefix="/api/supervisor", tags=["supervisor"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
