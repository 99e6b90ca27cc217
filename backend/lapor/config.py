"""
Lapor Core - Configuration

All settings come from environment variables with development defaults.
Services import these constants instead of reading the environment.
"""
import os


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in ("1", "true", "yes")


# =============================================================================
# DATABASE
# =============================================================================

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/lapor_core"
)

# Upper bound for a single store statement (PostgreSQL only)
DB_STATEMENT_TIMEOUT_MS = _int("DB_STATEMENT_TIMEOUT_MS", 10000)


# =============================================================================
# IDENTITY VAULT
# =============================================================================

IDENTITY_MASTER_SECRET = os.getenv(
    "IDENTITY_MASTER_SECRET",
    "lapor-identity-master-secret-change-in-production"
)


# =============================================================================
# SLA / ESCALATION
# =============================================================================

SLA_LEVEL1_HOURS = _int("SLA_LEVEL1_HOURS", 72)    # 3 days
SLA_LEVEL2_HOURS = _int("SLA_LEVEL2_HOURS", 168)   # 7 days
MAX_ESCALATION_LEVEL = _int("MAX_ESCALATION_LEVEL", 3)

ESCALATION_CHECK_INTERVAL_SECONDS = _int("ESCALATION_CHECK_INTERVAL_SECONDS", 300)
ESCALATION_REPORT_INTERVAL_SECONDS = _int("ESCALATION_REPORT_INTERVAL_SECONDS", 3600)


# =============================================================================
# ROUTING
# =============================================================================

ROUTING_DEFAULT_PRIORITY = _int("ROUTING_DEFAULT_PRIORITY", 3)
ROUTING_MIN_KEYWORD_MATCHES = _int("ROUTING_MIN_KEYWORD_MATCHES", 1)
ROUTING_DEFAULT_DEPARTMENT = os.getenv("ROUTING_DEFAULT_DEPARTMENT", "INFRASTRUKTUR")


# =============================================================================
# EVENTS
# =============================================================================

EVENT_BROKER = os.getenv("EVENT_BROKER", "memory")  # memory | kafka
KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
EVENT_DEAD_LETTER_TOPIC = os.getenv("EVENT_DEAD_LETTER_TOPIC", "lapor.dead_letter")

# Comma-separated user ids notified about every new report
NOTIFY_ADMIN_IDS = [
    admin_id.strip()
    for admin_id in os.getenv("NOTIFY_ADMIN_IDS", "").split(",")
    if admin_id.strip()
]


# =============================================================================
# APPLICATION
# =============================================================================

INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")
RUN_BACKGROUND_JOBS = _bool("RUN_BACKGROUND_JOBS", True)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
