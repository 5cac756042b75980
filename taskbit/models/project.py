from taskbit.core.clock import UtcDateTime
from typing import List, Optional
import enum
from pydantic import BaseModel, Field
from taskbit.models.update import PartialUpdate


class ProjectStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TaskStatus(str, enum.Enum):
    TODO = "todo"
    IN_PROGRESS = "inprogress"
    DONE = "done"


class Task(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[UtcDateTime] = None
    created_at: Optional[UtcDateTime] = None
    updated_at: Optional[UtcDateTime] = None

    class Config:
        use_enum_values = True


class TaskCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[UtcDateTime] = None

    class Config:
        use_enum_values = True


class TaskUpdate(PartialUpdate):
    non_nullable = frozenset({"name", "status"})

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[UtcDateTime] = None

    class Config:
        use_enum_values = True


class Project(BaseModel):
    """A project as read back: the stored document plus its current tasks."""

    id: str
    uid: str
    name: str
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    client_id: Optional[str] = None
    created_at: Optional[UtcDateTime] = None
    updated_at: Optional[UtcDateTime] = None
    last_activity: Optional[UtcDateTime] = None
    tasks: List[Task] = Field(default_factory=list)

    class Config:
        use_enum_values = True


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    client_id: Optional[str] = None

    class Config:
        use_enum_values = True


class ProjectUpdate(PartialUpdate):
    non_nullable = frozenset({"name", "status"})

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None
    client_id: Optional[str] = None

    class Config:
        use_enum_values = True
