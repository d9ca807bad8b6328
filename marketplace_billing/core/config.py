import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./marketplace_billing.db")
RUN_MIGRATIONS = os.getenv("RUN_MIGRATIONS", "0")

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ✅ MercadoPago
MP_API_BASE_URL = os.getenv("MP_API_BASE_URL", "https://api.mercadopago.com")
MP_TIMEOUT_SECONDS = float(os.getenv("MP_TIMEOUT_SECONDS", "8"))
MP_TRANSPORT_RETRIES = int(os.getenv("MP_TRANSPORT_RETRIES", "2"))
MP_SUBSCRIPTIONS_ACCESS_TOKEN = os.getenv("MP_SUBSCRIPTIONS_ACCESS_TOKEN")
MP_SUBSCRIPTIONS_PUBLIC_KEY = os.getenv("MP_SUBSCRIPTIONS_PUBLIC_KEY")
MP_MARKETPLACE_ACCESS_TOKEN = os.getenv("MP_MARKETPLACE_ACCESS_TOKEN")

# ✅ Public URLs
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")

# ✅ Reconciliation
VERIFY_RETRY_AFTER_SECONDS = int(os.getenv("VERIFY_RETRY_AFTER_SECONDS", "5"))
ENTITLEMENT_CACHE_TTL_SECONDS = int(os.getenv("ENTITLEMENT_CACHE_TTL_SECONDS", "300"))

# ✅ CORS (comma-separated origins)
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
