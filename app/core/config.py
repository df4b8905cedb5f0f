import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./isp_billing.db")
RUN_MIGRATIONS = os.getenv("RUN_MIGRATIONS", "0")

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
CRON_SECRET = os.getenv("CRON_SECRET")

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")

# ✅ Frontend
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# ✅ M-Pesa (Daraja)
MPESA_CONSUMER_KEY = os.getenv("MPESA_CONSUMER_KEY")
MPESA_CONSUMER_SECRET = os.getenv("MPESA_CONSUMER_SECRET")
MPESA_SHORTCODE = os.getenv("MPESA_SHORTCODE")
MPESA_PASSKEY = os.getenv("MPESA_PASSKEY")
MPESA_CALLBACK_BASE_URL = os.getenv("MPESA_CALLBACK_BASE_URL")
MPESA_ENVIRONMENT = os.getenv("MPESA_ENVIRONMENT", "sandbox")  # sandbox | production
MPESA_TIMEOUT_SECONDS = int(os.getenv("MPESA_TIMEOUT_SECONDS", "30"))
MPESA_TIMEZONE = os.getenv("MPESA_TIMEZONE", "Africa/Nairobi")

# ✅ Billing policy
SUBSCRIPTION_GRACE_PERIOD_DAYS = int(os.getenv("SUBSCRIPTION_GRACE_PERIOD_DAYS", "0"))
RENEWAL_REMINDER_DAYS = int(os.getenv("RENEWAL_REMINDER_DAYS", "3"))
PENDING_PAYMENT_TTL_HOURS = int(os.getenv("PENDING_PAYMENT_TTL_HOURS", "24"))
STK_PUSH_RATE_LIMIT = int(os.getenv("STK_PUSH_RATE_LIMIT", "5"))
STK_PUSH_RATE_WINDOW_SECONDS = int(os.getenv("STK_PUSH_RATE_WINDOW_SECONDS", "60"))

# ✅ Client poller
PAYMENT_POLL_INTERVAL_SECONDS = int(os.getenv("PAYMENT_POLL_INTERVAL_SECONDS", "10"))
PAYMENT_POLL_MAX_ATTEMPTS = int(os.getenv("PAYMENT_POLL_MAX_ATTEMPTS", "30"))
