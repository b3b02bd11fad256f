"""Configuration for the routing/escalation engine, its Redis store and ARQ worker."""

import os

REDIS_URL: str = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
REDIS_CONN_TIMEOUT: int = int(os.environ.get("REDIS_CONN_TIMEOUT", "5"))
# "memory" keeps the catalog in-process (single API instance); "redis" shares it with the worker.
STORE_BACKEND: str = os.environ.get("STORE_BACKEND", "memory")
# Optional: Slack or Discord webhook URL; if set, notification requests are POSTed there.
WEBHOOK_URL: str = os.environ.get("WEBHOOK_URL", "")
SEED_MOCK_AGENTS: bool = os.environ.get("SEED_MOCK_AGENTS", "1") == "1"

# --- Ownership ---
QUEUE_OWNER_ID: str = os.environ.get("QUEUE_OWNER_ID", "unassigned-queue")

# --- Batch bounds ---
LIFECYCLE_BATCH_LIMIT: int = int(os.environ.get("LIFECYCLE_BATCH_LIMIT", "200"))
ESCALATION_BATCH_LIMIT: int = int(os.environ.get("ESCALATION_BATCH_LIMIT", "50"))
MAX_ESCALATION_LEVEL: int = 3

# --- Skill-based routing ---
# Count each in-batch assignment against the chosen agent's workload snapshot.
ROUTING_INTRA_BATCH_INCREMENT: bool = os.environ.get("ROUTING_INTRA_BATCH_INCREMENT", "1") == "1"
# Skip candidates whose open workload already reached max_cases.
ROUTING_ENFORCE_CAPACITY: bool = os.environ.get("ROUTING_ENFORCE_CAPACITY", "0") == "1"

# --- Operating hours for the scheduled escalation run ---
BUSINESS_DAYS: frozenset[int] = frozenset(
    int(d) for d in os.environ.get("BUSINESS_DAYS", "0,1,2,3,4").split(",") if d.strip()
)  # Monday = 0
BUSINESS_START_HOUR: int = int(os.environ.get("BUSINESS_START_HOUR", "8"))
BUSINESS_END_HOUR: int = int(os.environ.get("BUSINESS_END_HOUR", "18"))
BUSINESS_TIMEZONE: str = os.environ.get("BUSINESS_TIMEZONE", "UTC")

# --- Worker cadence ---
ESCALATION_CRON_MINUTE: int = int(os.environ.get("ESCALATION_CRON_MINUTE", "0"))  # hourly at :00
NOTIFICATION_DISPATCH_LIMIT: int = int(os.environ.get("NOTIFICATION_DISPATCH_LIMIT", "100"))
# API process with STORE_BACKEND=memory: seconds between drains of its own outbox.
NOTIFICATION_DISPATCH_INTERVAL: float = float(os.environ.get("NOTIFICATION_DISPATCH_INTERVAL", "60"))
