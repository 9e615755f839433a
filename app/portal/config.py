import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str
    region: str
    allow_self_registration: bool

    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    max_attachment_bytes: int
    default_page_size: int
    max_page_size: int
    event_queue_size: int
    event_keepalive_seconds: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///portal.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        region=_getenv("PORTAL_REGION", "global"),
        allow_self_registration=_getenv_bool("ALLOW_SELF_REGISTRATION", True),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        max_attachment_bytes=_getenv_int("MAX_ATTACHMENT_BYTES", 10 * 1024 * 1024),
        default_page_size=_getenv_int("DEFAULT_PAGE_SIZE", 10),
        max_page_size=_getenv_int("MAX_PAGE_SIZE", 100),
        event_queue_size=_getenv_int("EVENT_QUEUE_SIZE", 100),
        event_keepalive_seconds=_getenv_int("EVENT_KEEPALIVE_SECONDS", 15),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "PORTAL_REGION": s.region,
        "ALLOW_SELF_REGISTRATION": s.allow_self_registration,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "MAX_ATTACHMENT_BYTES": s.max_attachment_bytes,
        "DEFAULT_PAGE_SIZE": s.default_page_size,
        "MAX_PAGE_SIZE": s.max_page_size,
        "EVENT_QUEUE_SIZE": s.event_queue_size,
        "EVENT_KEEPALIVE_SECONDS": s.event_keepalive_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # request body cap; individual attachments are checked against MAX_ATTACHMENT_BYTES
        "MAX_CONTENT_LENGTH": max(s.max_attachment_bytes, 1024 * 1024) + 1024 * 1024,
    }
