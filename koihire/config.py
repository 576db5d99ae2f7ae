import os

# database connection string, e.g. postgresql://postgres:pw@localhost:5432/koihire
DATABASE_URL = os.getenv("KOIHIRE_DATABASE_URL", "sqlite:///./koihire.db")

SESSION_SECRET = os.getenv("KOIHIRE_SESSION_SECRET", "dev-session-secret-change-me")

LOG_LEVEL = os.getenv("KOIHIRE_LOG_LEVEL", "INFO")

CORS_ORIGINS = [o.strip() for o in os.getenv("KOIHIRE_CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

UPLOAD_DIR = os.getenv("KOIHIRE_UPLOAD_DIR", "uploads")
MAX_UPLOAD_MB = int(os.getenv("KOIHIRE_MAX_UPLOAD_MB", "10"))
ALLOWED_UPLOAD_EXTENSIONS = {
    ".pdf", ".doc", ".docx", ".txt", ".zip", ".png", ".jpg", ".jpeg", ".gif", ".psd", ".ai", ".mp4",
}

# Stripe; when the secret key is empty payments settle internally
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
CURRENCY = os.getenv("KOIHIRE_CURRENCY", "usd")

# platform fee rates
BUYER_FEE_RATE = 0.025
SELLER_COMMISSION_RATE = 0.125
MIN_PAYOUT_AMOUNT = 10.00

# featured level -> (price, days)
FEATURE_PLANS = {
    "FEATURED": (49.0, 30),
    "PREMIUM": (149.0, 60),
    "SPOTLIGHT": (299.0, 90),
}
