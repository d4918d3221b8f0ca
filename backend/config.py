"""
Service Configuration
=====================
Environment-driven settings for the order/payment service.

Every value is a class attribute read once from the environment. Components
receive a ``ServiceConfig`` instance, so tests (or an embedding process) can
override single attributes on the instance without touching the environment.
"""

import os


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


class ServiceConfig:
    """Service configuration from environment"""

    # Server
    ENV = os.getenv("ENV", "development")
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8080"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

    # Razorpay
    RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
    RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
    RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
    RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")
    RAZORPAY_TIMEOUT_SECONDS = float(os.getenv("RAZORPAY_TIMEOUT_SECONDS", "10"))

    # Payment links
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8080").rstrip("/")
    CURRENCY = os.getenv("CURRENCY", "INR")
    PAYMENT_DESCRIPTION = os.getenv("PAYMENT_DESCRIPTION", "Foodie order payment")

    # Order store
    STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")  # memory | redis
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "foodie")

    # Delivery simulator
    RESTAURANT_LAT = float(os.getenv("RESTAURANT_LAT", "12.9716"))
    RESTAURANT_LNG = float(os.getenv("RESTAURANT_LNG", "77.5946"))
    SIM_START_DELAY_SECONDS = float(os.getenv("SIM_START_DELAY_SECONDS", "5"))
    SIM_TICK_SECONDS = float(os.getenv("SIM_TICK_SECONDS", "2"))
    SIM_STEP_DEGREES = float(os.getenv("SIM_STEP_DEGREES", "0.0005"))  # ~55 m
    SIM_ARRIVAL_THRESHOLD = float(os.getenv("SIM_ARRIVAL_THRESHOLD", "0.0003"))
    SIM_RESUME_ON_START = _env_bool("SIM_RESUME_ON_START", "true")

    VERSION = "1.0.0"

    @property
    def is_development(self) -> bool:
        return self.ENV == "development"

    @property
    def webhook_verification_enabled(self) -> bool:
        return bool(self.RAZORPAY_WEBHOOK_SECRET)


config = ServiceConfig()
