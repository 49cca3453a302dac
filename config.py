import os

# Store
STORE_NAME = os.getenv("STORE_NAME", "Storefront")
PRIMARY_CURRENCY = os.getenv("PRIMARY_CURRENCY", "INR")
CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₹")
CLIENT_URI = os.getenv("CLIENT_URI", "http://localhost:5173")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", CLIENT_URI).split(",")
PORT = int(os.getenv("PORT", "8000"))

# Environment
DEBUG = os.getenv("DEBUG", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Database (in-memory store when DATABASE_URL is unset)
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

# Security
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret_change_me")
JWT_EXP_MIN = int(os.getenv("JWT_EXP_MIN", str(7 * 24 * 60)))

# Payments
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")

# Email
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASS = os.getenv("EMAIL_PASS")
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))

# Deadline for every database and gateway call, in seconds
UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "9"))
