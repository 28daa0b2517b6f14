import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Session tokens
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", 60 * 24 * 7))  # 7 days, 0 = never expires
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "orangebox_auth")
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() in ("1", "true", "yes")
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

# Catalog result windows
SHOP_PAGE_LIMIT = int(os.getenv("SHOP_PAGE_LIMIT", 50))
COLLECTION_LIMIT = int(os.getenv("COLLECTION_LIMIT", 100))

CART_ADD_ATTEMPTS = int(os.getenv("CART_ADD_ATTEMPTS", 3))

# Media host
CLOUD_NAME = os.getenv("CLOUD_NAME")
CLOUD_API_KEY = os.getenv("CLOUD_API_KEY")
CLOUD_API_SECRET = os.getenv("CLOUD_API_SECRET")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.getenv("PORT", 8000))
