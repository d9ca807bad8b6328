import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace_billing.core import config
from marketplace_billing.core.logging_config import setup_logging

# ✅ Import All API Routes
from marketplace_billing.api.routes import mercadopago_webhook, plans, subscriptions, users, system
from marketplace_billing.services.errors import BillingError

logger = logging.getLogger(__name__)


# ============================================
# ✅ STARTUP
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL)
    if config.RUN_MIGRATIONS == "1":
        from marketplace_billing.db.migrate import run_migrations
        run_migrations()
    else:
        from marketplace_billing.db.init_db import init_db
        init_db()
    logger.info("Marketplace Billing API started")
    yield


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="Marketplace Billing", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# ✅ ERROR RESPONSES
# ============================================

@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(mercadopago_webhook.router)
app.include_router(subscriptions.router)
app.include_router(plans.router)
app.include_router(users.router)
app.include_router(system.router)


@app.get("/")
def root():
    return {"status": "Marketplace Billing API running"}
