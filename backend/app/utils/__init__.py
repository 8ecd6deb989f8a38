"""Utils package."""
from app.utils.clock import next_day, next_month, start_of_day, start_of_month, utcnow
from app.utils.ids import is_replica_id, new_id, new_replica_id

__all__ = [
    "next_day", "next_month", "start_of_day", "start_of_month", "utcnow",
    "is_replica_id", "new_id", "new_replica_id",
]
