import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings
from database import init_db
from routers import ai, auth, upload

# ─── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Ledger")

# ─── App ──────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Household finance ledger: statement import pipeline and finance assistant",
)

# ─── CORS ─────────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ─── Routers ──────────────────────────────────────────────────────────────────

app.include_router(auth.router, prefix=f"{settings.API_PREFIX}/auth", tags=["Authentication"])
app.include_router(upload.router, prefix="/ops", tags=["Statement Upload"])
app.include_router(ai.router, prefix=f"{settings.API_PREFIX}/ai", tags=["Assistant"])

# ─── Events ───────────────────────────────────────────────────────────────────

@app.on_event("startup")
def startup():
    logger.info("📒 Household Ledger starting up...")
    init_db()
    logger.info("✅ Database initialized")
    logger.info(f"📂 Upload directory: {settings.UPLOAD_DIR}")


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": settings.PROJECT_NAME, "version": settings.VERSION}
