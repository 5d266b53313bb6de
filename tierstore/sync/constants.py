TIERS = ("cdn", "cloud", "cache", "local", "collab")

# Order in which tiers are tried when a file has to be read back.
SERVING_ORDER = ("cdn", "cloud", "cache", "local", "collab")

OPERATIONS = frozenset({"upload", "delete", "sync", "verify"})

QUEUE_STATUSES = ("pending", "processing", "completed", "failed")

# Lower value is more urgent.
PRIORITY_CRITICAL = 1
PRIORITY_HIGH = 5
PRIORITY_NORMAL = 10
PRIORITY_LOW = 20


def priority_label(priority: int) -> str:
    """Map a numeric priority onto its band name."""
    if priority <= PRIORITY_CRITICAL:
        return "critical"
    if priority <= PRIORITY_HIGH:
        return "high"
    if priority <= PRIORITY_NORMAL:
        return "normal"
    return "low"
