import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Environment driven settings, read once at import."""

    def __init__(self):
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./spaces.db")
        self.redis_url = os.getenv("REDIS_URL")

        # -------- AUTH --------
        self.jwt_secret = os.getenv("JWT_SECRET", "dev-secret")
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))

        # -------- RAZORPAY --------
        self.razorpay_key_id = os.getenv("RAZORPAY_KEY_ID", "")
        self.razorpay_key_secret = os.getenv("RAZORPAY_KEY_SECRET", "")
        self.razorpay_webhook_secret = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
        self.payment_provider_timeout = float(os.getenv("PAYMENT_PROVIDER_TIMEOUT", 10))
        self.currency = os.getenv("CURRENCY", "INR")

        # -------- BOOKING --------
        self.business_timezone = os.getenv("BUSINESS_TIMEZONE", "Asia/Kolkata")
        self.operating_start_hour = int(os.getenv("OPERATING_START_HOUR", 9))
        self.operating_end_hour = int(os.getenv("OPERATING_END_HOUR", 22))
        self.booking_lock_timeout = float(os.getenv("BOOKING_LOCK_TIMEOUT", 10))
        self.calendar_organizer_email = os.getenv("CALENDAR_ORGANIZER_EMAIL", "bookings@example.com")

        # -------- LOGGING --------
        self.log_dir = os.getenv("LOG_DIR", "logs")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
