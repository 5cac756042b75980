from taskbit.models.user import UserProfile
from taskbit.models.project import Project, ProjectCreate, ProjectUpdate, ProjectStatus, Task, TaskCreate, TaskUpdate, TaskStatus
from taskbit.models.time_entry import TimeEntry, TimeEntryCreate, TimeEntryUpdate
from taskbit.models.invoice import Invoice, InvoiceCreate, InvoiceUpdate, InvoiceItem, InvoiceStatus, BillingInvoice
from taskbit.models.client import Client, ClientCreate, ClientUpdate, PortalSettings, PortalSettingsUpdate
from taskbit.models.activity_log import ActivityLog, ActivityType, ActivityAction
from taskbit.models.subscription import Subscription

__all__ = [
    "UserProfile",
    "Project", "ProjectCreate", "ProjectUpdate", "ProjectStatus",
    "Task", "TaskCreate", "TaskUpdate", "TaskStatus",
    "TimeEntry", "TimeEntryCreate", "TimeEntryUpdate",
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceItem", "InvoiceStatus", "BillingInvoice",
    "Client", "ClientCreate", "ClientUpdate", "PortalSettings", "PortalSettingsUpdate",
    "ActivityLog", "ActivityType", "ActivityAction",
    "Subscription",
]
