import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from formaticapi.config import config
from formaticapi.database import database
from formaticapi.logging_conf import configure_logging
from formaticapi.routers.analytics import router as analytics_router
from formaticapi.routers.auth import router as auth_router
from formaticapi.routers.form import router as form_router
from formaticapi.routers.submission import router as submission_router
from formaticapi.routers.uploads import router as uploads_router
from formaticapi.routers.user import router as user_router
from formaticapi.seed import seed_super_admin

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # connect database
    await database.connect()
    await seed_super_admin()
    yield
    # disconnect database
    await database.disconnect()

app = FastAPI(
    title="Formatic API",
    description="API for building forms and collecting submissions",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(user_router, prefix="/api/users", tags=["Users"])
app.include_router(form_router, prefix="/api/forms", tags=["Forms"])
app.include_router(submission_router, prefix="/api/submissions", tags=["Submissions"])
app.include_router(uploads_router, prefix="/api/uploads", tags=["Uploads"])
app.include_router(analytics_router, prefix="/api/analytics", tags=["Analytics"])


@app.get("/api/health", tags=["Health"])
async def health():
    return {"status": "ok"}
