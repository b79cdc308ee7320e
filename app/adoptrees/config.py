import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    app_url: str
    log_level: str
    rate_limit_enabled: bool

    storage_backend: str
    storage_public_base_url: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    razorpay_key_id: str
    razorpay_key_secret: str
    razorpay_webhook_secret: str

    celery_broker_url: str
    celery_result_backend: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getflag(name: str, default: bool) -> bool:
    raw = _getenv(name, "")
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    broker = _getenv("CELERY_BROKER_URL", _getenv("REDIS_URL", "redis://localhost:6379/0"))
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///adoptrees.db"),
        app_url=_getenv("APP_URL", "http://localhost:8080").rstrip("/"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        rate_limit_enabled=_getflag("RATE_LIMIT_ENABLED", True),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_public_base_url=_getenv("STORAGE_PUBLIC_BASE_URL", "/media").rstrip("/"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        razorpay_key_id=_getenv("RAZORPAY_KEY_ID", ""),
        razorpay_key_secret=_getenv("RAZORPAY_KEY_SECRET", ""),
        razorpay_webhook_secret=_getenv("RAZORPAY_WEBHOOK_SECRET", ""),
        celery_broker_url=broker,
        celery_result_backend=_getenv("CELERY_RESULT_BACKEND", broker),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "APP_URL": s.app_url,
        "LOG_LEVEL": s.log_level,
        "RATE_LIMIT_ENABLED": s.rate_limit_enabled,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_PUBLIC_BASE_URL": s.storage_public_base_url,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "RAZORPAY_KEY_ID": s.razorpay_key_id,
        "RAZORPAY_KEY_SECRET": s.razorpay_key_secret,
        "RAZORPAY_WEBHOOK_SECRET": s.razorpay_webhook_secret,
        "CELERY_BROKER_URL": s.celery_broker_url,
        "CELERY_RESULT_BACKEND": s.celery_result_backend,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # multipart uploads carry at most 5 images of 10MB each
        "MAX_CONTENT_LENGTH": 55 * 1024 * 1024,
    }
