"""SQLAlchemy models for Fix It by Threalty."""

from fixit.models.user import User
from fixit.models.property import Property, Unit, PropertyUser
from fixit.models.invite import Invite
from fixit.models.vendor import Vendor, vendor_properties
from fixit.models.request import Request
from fixit.models.scheduled_maintenance import ScheduledMaintenance
from fixit.models.activity import StatusHistoryEntry, Comment, CommentMention
from fixit.models.media import Media
from fixit.models.notification import Notification
from fixit.models.audit import AuditLog
from fixit.models.jobs import JobsOutbox, SchedulerLease

__all__ = [
    "User",
    "Property",
    "Unit",
    "PropertyUser",
    "Invite",
    "Vendor",
    "vendor_properties",
    "Request",
    "ScheduledMaintenance",
    "StatusHistoryEntry",
    "Comment",
    "CommentMention",
    "Media",
    "Notification",
    "AuditLog",
    "JobsOutbox",
    "SchedulerLease",
]
