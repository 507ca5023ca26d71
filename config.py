import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


REGISTRATION_API_BASE_URL = os.getenv("REGISTRATION_API_BASE_URL", "http://localhost:3000")
UPLOAD_API_BASE_URL = os.getenv("UPLOAD_API_BASE_URL", REGISTRATION_API_BASE_URL)
NOTIFICATION_API_BASE_URL = os.getenv("NOTIFICATION_API_BASE_URL", REGISTRATION_API_BASE_URL)

HTTP_TIMEOUT_SECONDS = _float_env("HTTP_TIMEOUT_SECONDS", 10.0)
UPLOAD_TIMEOUT_SECONDS = _float_env("UPLOAD_TIMEOUT_SECONDS", 60.0)
HTTP_MAX_RETRIES = _int_env("HTTP_MAX_RETRIES", 3)
HTTP_BACKOFF_BASE_SECONDS = _float_env("HTTP_BACKOFF_BASE_SECONDS", 0.2)
HTTP_BACKOFF_MAX_SECONDS = _float_env("HTTP_BACKOFF_MAX_SECONDS", 5.0)

# "http" talks to the upload API of the registration portal, "s3" writes straight to a bucket
BLOB_BACKEND = os.getenv("BLOB_BACKEND", "http")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")
S3_BUCKET = os.getenv("S3_BUCKET")
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_PRESIGNED_URL_TTL_SECONDS = _int_env("S3_PRESIGNED_URL_TTL_SECONDS", 7 * 24 * 3600)

FALLBACK_CACHE_PATH = os.getenv("FALLBACK_CACHE_PATH", ".cache/registrations.json")
FALLBACK_CACHE_ENABLED = _bool_env("FALLBACK_CACHE_ENABLED", True)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = _bool_env("LOG_JSON", True)

METRICS_ENABLED = _bool_env("METRICS_ENABLED", False)
METRICS_BACKEND = os.getenv("METRICS_BACKEND", "noop")
