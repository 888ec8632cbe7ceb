import os

from dotenv import load_dotenv

# Load environment variables from .env file, if it exists
load_dotenv()

# Company-local wall clock used for "today" and punctuality
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "America/Sao_Paulo")

# Kiosk sessions (identify -> select -> punch) expire after this long
CLOCK_SESSION_TTL_SECONDS = float(os.getenv("CLOCK_SESSION_TTL_SECONDS", "900"))

# Verification flow pacing
SAMPLE_INTERVAL_SECONDS = float(os.getenv("SAMPLE_INTERVAL_SECONDS", "2.5"))
POSITION_TIMEOUT_SECONDS = float(os.getenv("POSITION_TIMEOUT_SECONDS", "10"))

# Optional override of the face acceptance threshold (see utils/face_match.py)
FACE_MATCH_THRESHOLD_OVERRIDE = os.getenv("FACE_MATCH_THRESHOLD")

# Payment provider
MERCADOPAGO_API_URL = os.getenv("MERCADOPAGO_API_URL", "https://api.mercadopago.com")
MERCADOPAGO_ACCESS_TOKEN = os.getenv("MERCADOPAGO_ACCESS_TOKEN")
PAYMENT_POLL_INTERVAL_SECONDS = float(os.getenv("PAYMENT_POLL_INTERVAL_SECONDS", "5"))

# Links handed out to employees (facial enrollment)
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5173")

# CORS
DEV_DOMAIN = os.getenv("DEV_DOMAIN", "http://localhost:5173")
PRODUCTION_DOMAIN = os.getenv("PRODUCTION_DOMAIN")

# Firebase
FIREBASE_SERVICE_ACCOUNT_KEY = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY")
FIREBASE_SERVICE_ACCOUNT_KEY_PATH = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY_PATH")

# Accounts allowed into the /super-admin routes (comma separated)
SUPER_ADMIN_EMAILS = {
    email.strip().lower()
    for email in os.getenv("SUPER_ADMIN_EMAILS", "admin@agentb.com").split(",")
    if email.strip()
}
