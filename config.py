import os


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))  # 7 days
ADMIN_EMAILS = {e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()}

# Cache TTLs (seconds)
CACHE_ENABLED = _flag("CACHE_ENABLED", "1")
CACHE_TTL_PRODUCTS = int(os.getenv("CACHE_TTL_PRODUCTS", 300))
CACHE_TTL_PRODUCT = int(os.getenv("CACHE_TTL_PRODUCT", 300))
CACHE_TTL_COLLECTIONS = int(os.getenv("CACHE_TTL_COLLECTIONS", 300))
CACHE_TTL_USER_ORDERS = int(os.getenv("CACHE_TTL_USER_ORDERS", 300))
CACHE_TTL_ADMIN_ORDERS = int(os.getenv("CACHE_TTL_ADMIN_ORDERS", 120))

# Cart
CART_MAX_QUANTITY_PER_LINE = int(os.getenv("CART_MAX_QUANTITY_PER_LINE", 10))

# Payments
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")
PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", 10))

# Service
SERVICE_NAME = os.getenv("SERVICE_NAME", "Storefront API")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SEED_DEMO_DATA = _flag("SEED_DEMO_DATA")
