from taskbit.core.clock import UtcDateTime
import enum
from pydantic import BaseModel


class ActivityType(str, enum.Enum):
    PROJECT = "project"
    TASK = "task"
    INVOICE = "invoice"
    TIME = "time"
    CLIENT = "client"
    SYSTEM = "system"


class ActivityAction(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    COMPLETED = "completed"
    SENT = "sent"
    STARTED = "started"
    STOPPED = "stopped"
    APPROVED = "approved"
    MIGRATION = "migration"


class ActivityLog(BaseModel):
    """Append-only audit entry; never updated or deleted once written."""

    id: str
    uid: str
    timestamp: UtcDateTime
    type: ActivityType
    action: ActivityAction
    description: str

    class Config:
        use_enum_values = True
