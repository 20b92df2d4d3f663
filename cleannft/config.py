import logging
import os

from dotenv import load_dotenv

load_dotenv(encoding="utf-8")

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "change-me"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


class Settings:
    def __init__(self):
        self.database_url = os.getenv("DATABASE_URL")
        self.app_env = (os.getenv("APP_ENV") or "development").lower()
        self.log_level = (os.getenv("LOG_LEVEL") or "INFO").upper()

        self.jwt_secret = os.getenv("JWT_SECRET") or DEFAULT_JWT_SECRET
        self.jwt_expires_days = _env_int("JWT_EXPIRES_DAYS", 7)

        origins = os.getenv("CORS_ORIGINS") or "http://localhost:3000,http://127.0.0.1:3000"
        self.cors_origins = [o.strip() for o in origins.split(",") if o.strip()]

        self.chain_network = os.getenv("CHAIN_NETWORK") or "polygon-amoy"

        # best_effort: random nonce when the device sends none. nonce_required: reject instead.
        self.idempotency_mode = (os.getenv("IDEMPOTENCY_MODE") or "best_effort").lower()

        self.outbox_processor_enabled = _env_bool("OUTBOX_PROCESSOR_ENABLED", True)
        self.outbox_poll_interval_seconds = _env_float("OUTBOX_POLL_INTERVAL_SECONDS", 2.0)
        self.outbox_batch_size = _env_int("OUTBOX_BATCH_SIZE", 10)
        self.outbox_lock_ttl_seconds = _env_int("OUTBOX_LOCK_TTL_SECONDS", 300)
        self.outbox_worker_id = os.getenv("OUTBOX_WORKER_ID") or os.getenv("HOSTNAME") or "worker"

        self.settlement_gateway = (os.getenv("SETTLEMENT_GATEWAY") or "simulated").lower()
        self.settlement_timeout_seconds = _env_float("SETTLEMENT_TIMEOUT_SECONDS", 30.0)
        self.chain_relayer_url = os.getenv("CHAIN_RELAYER_URL")
        self.pinata_api_url = os.getenv("PINATA_API_URL") or "https://api.pinata.cloud"
        self.pinata_api_key = os.getenv("PINATA_API_KEY")
        self.pinata_secret_key = os.getenv("PINATA_SECRET_KEY")

        self.session_cleanup_enabled = _env_bool("SESSION_CLEANUP_ENABLED", True)
        self.session_cleanup_cron = os.getenv("SESSION_CLEANUP_CRON") or "0 * * * *"

        self.db_pool_timeout_seconds = _env_int("DB_POOL_TIMEOUT_SECONDS", 10)
        self.db_statement_timeout_ms = _env_int("DB_STATEMENT_TIMEOUT_MS", 30000)

        self.health_max_pending_outbox = _env_int("HEALTH_MAX_PENDING_OUTBOX", 100)
        self.health_max_failed_txs = _env_int("HEALTH_MAX_FAILED_TXS", 50)

    def check(self):
        if self.jwt_secret == DEFAULT_JWT_SECRET:
            if self.app_env == "production":
                raise RuntimeError("JWT_SECRET must be set when APP_ENV=production")
            logger.warning("JWT_SECRET is not set; using the insecure default", extra={"app_env": self.app_env})

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


settings = Settings()


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
