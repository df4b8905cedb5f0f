import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# ✅ Import All API Routes
from app.api.routes import payments, mpesa_callback, subscriptions, system
from app.core import config
from app.core.logging_config import setup_logging

setup_logging(config.LOG_LEVEL, config.LOG_DIR)
logger = logging.getLogger(__name__)


# ============================================
# ✅ STARTUP
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.RUN_MIGRATIONS == "1":
        from app.db.migrate import run_migrations
        run_migrations()
    yield


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="ISP Billing API", lifespan=lifespan)

# ✅ CORS LOCKDOWN: ONLY ALLOW THE PORTAL FRONTEND
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_URL,
        "http://localhost:5173",      # local frontend
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "X-Cron-Secret"],
)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(payments.router)
app.include_router(mpesa_callback.router)
app.include_router(subscriptions.router)
app.include_router(system.router)


# ============================================
# ✅ HEALTH CHECK ROOT ENDPOINT
# ============================================

@app.get("/")
def root():
    return {"status": "ISP Billing API running"}
