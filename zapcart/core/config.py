import os

from dotenv import load_dotenv

# Carrega o .env da raiz do projeto
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./zapcart.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

# Z-API
ZAPI_BASE_URL = os.getenv("ZAPI_BASE_URL", "https://api.z-api.io").rstrip("/")
ZAPI_TIMEOUT_SECONDS = _env_float("ZAPI_TIMEOUT_SECONDS", "20")

# Deduplicação de entregas do webhook
DEDUP_MESSAGE_TTL_SECONDS = _env_float("DEDUP_MESSAGE_TTL_SECONDS", "60")
DEDUP_CONTENT_WINDOW_SECONDS = _env_float("DEDUP_CONTENT_WINDOW_SECONDS", "10")
PRODUCT_DEDUP_TTL_SECONDS = _env_float("PRODUCT_DEDUP_TTL_SECONDS", "60")

# Item repetido dentro desta janela é tratado como duplicidade acidental
ITEM_DUPLICATE_WINDOW_SECONDS = _env_float("ITEM_DUPLICATE_WINDOW_SECONDS", "30")

# Bucket de evento (BAZAR/LIVE) usa a data local
EVENT_TIMEZONE = os.getenv("EVENT_TIMEZONE", "America/Sao_Paulo")

# Anti-bloqueio
TENANT_MESSAGES_PER_MINUTE = int(os.getenv("TENANT_MESSAGES_PER_MINUTE", "15"))
PHONE_THROTTLE_WINDOW_SECONDS = _env_float("PHONE_THROTTLE_WINDOW_SECONDS", "120")
PHONE_THROTTLE_MIN_SECONDS = _env_float("PHONE_THROTTLE_MIN_SECONDS", "15")
PHONE_THROTTLE_MAX_SECONDS = _env_float("PHONE_THROTTLE_MAX_SECONDS", "45")
BATCH_DELAY_MIN_SECONDS = _env_float("BATCH_DELAY_MIN_SECONDS", "3")
BATCH_DELAY_MAX_SECONDS = _env_float("BATCH_DELAY_MAX_SECONDS", "8")
LIVE_DELAY_MIN_SECONDS = _env_float("LIVE_DELAY_MIN_SECONDS", "8")
LIVE_DELAY_MAX_SECONDS = _env_float("LIVE_DELAY_MAX_SECONDS", "20")
GREETING_PROBABILITY = _env_float("GREETING_PROBABILITY", "0.3")
EMOJI_SWAP_PROBABILITY = _env_float("EMOJI_SWAP_PROBABILITY", "0.5")
INVISIBLE_CHAR_PROBABILITY = _env_float("INVISIBLE_CHAR_PROBABILITY", "0.5")
_pacer_seed = os.getenv("PACER_RANDOM_SEED", "").strip()
PACER_RANDOM_SEED = int(_pacer_seed) if _pacer_seed else None
PACING_ENABLED = _env_bool("PACING_ENABLED", "1")

# Confirmações pendentes (link de checkout)
PENDING_CONFIRMATION_TTL_MINUTES = int(os.getenv("PENDING_CONFIRMATION_TTL_MINUTES", "30"))
