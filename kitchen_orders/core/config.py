import os
from dotenv import load_dotenv

# Carrega o .env da raiz do projeto
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer for {name}: {raw}") from exc


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./kitchen_orders.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_TEST = ENV_NORMALIZED == "test"
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

# Estoque / pedidos
STOCK_TRANSACTION_MAX_RETRIES = _env_int("STOCK_TRANSACTION_MAX_RETRIES", 10)
ORDER_WRITE_MAX_RETRIES = _env_int("ORDER_WRITE_MAX_RETRIES", 5)
STRICT_STATUS_TRANSITIONS = _env_flag("STRICT_STATUS_TRANSITIONS")
LOW_STOCK_THRESHOLD = _env_int("LOW_STOCK_THRESHOLD", 10)
ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "D").strip() or "D"

# Seed usado apenas quando o ledger ainda não existe no banco
INITIAL_STOCK = {
    "ayam": max(0, _env_int("INITIAL_STOCK_AYAM", 0)),
    "jamur": max(0, _env_int("INITIAL_STOCK_JAMUR", 0)),
}

# Fuso usado para agrupar estatísticas por dia/hora
STATS_TIMEZONE = os.getenv("STATS_TIMEZONE", "UTC").strip() or "UTC"
