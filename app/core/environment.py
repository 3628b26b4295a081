import os


def is_production() -> bool:
    """Detects if running in production via PRODUCTION variable"""
    return os.getenv("PRODUCTION", "false").lower() == "true"


def get_database_url() -> str:
    """Returns SQLAlchemy database URL based on environment"""
    if is_production():
        return os.getenv("DATABASE_URL_PROD") or os.getenv("DATABASE_URL")
    return os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./ports.db")


def get_sql_echo() -> bool:
    return os.getenv("SQL_ECHO", "false").lower() == "true"


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def get_max_allocation_candidates() -> int:
    """How many free ports an allocation may try before giving up on a race"""
    return max(1, int(os.getenv("ALLOCATION_MAX_CANDIDATES", "5")))


def get_checkout_rate_limit() -> str:
    return os.getenv("CHECKOUT_RATE_LIMIT", "30/minute")


def create_tables_on_startup() -> bool:
    return os.getenv("CREATE_TABLES_ON_STARTUP", "true").lower() == "true"
