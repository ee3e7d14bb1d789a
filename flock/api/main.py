from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flock import __version__
from flock.api.errors import register_exception_handlers
from flock.api.routers import health, members, roles, tags, users
from flock.common.logger import setup_logger
from flock.core.config import get_settings

settings = get_settings()

setup_logger(
    "flock",
    log_dir=settings.log_dir,
    level=settings.log_level,
    file_logging=settings.log_to_file,
)

app = FastAPI(
    title=settings.app_name,
    description="Church back-office access control and member tagging",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(health.router)
app.include_router(roles.router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(tags.router, prefix="/api")
app.include_router(members.router, prefix="/api")


@app.get("/")
def root():
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
    }
