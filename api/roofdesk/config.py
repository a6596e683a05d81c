import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./roofdesk.db")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
ADMIN_ACCESS_TOKEN = os.getenv("ADMIN_ACCESS_TOKEN")
SESSION_MAX_AGE_SECONDS = int(os.getenv("SESSION_MAX_AGE_SECONDS", "3600"))
DEFAULT_VALIDITY_DAYS = int(os.getenv("DEFAULT_VALIDITY_DAYS", "30"))
WEB_BASE_URL = os.getenv("WEB_BASE_URL", "http://localhost:3000")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "receipts")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() in ("1", "true", "yes")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
WORKER_QUEUE = os.getenv("WORKER_QUEUE", "roofdesk")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
FOLLOW_UP_AFTER_DAYS = int(os.getenv("FOLLOW_UP_AFTER_DAYS", "7"))
ESCALATE_AFTER_DAYS = int(os.getenv("ESCALATE_AFTER_DAYS", "14"))
MAX_FOLLOW_UPS = int(os.getenv("MAX_FOLLOW_UPS", "3"))
