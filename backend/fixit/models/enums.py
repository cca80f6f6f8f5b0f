"""Enumeration types for the Fix It domain model."""

from enum import Enum


class GlobalRole(str, Enum):
    """Platform-wide role of a user."""
    ADMIN = "admin"
    LANDLORD = "landlord"
    PROPERTY_MANAGER = "propertymanager"
    TENANT = "tenant"
    VENDOR = "vendor"


class RegistrationStatus(str, Enum):
    """Account lifecycle."""
    PENDING_EMAIL_VERIFICATION = "pending_email_verification"
    PENDING_INVITE_ACCEPTANCE = "pending_invite_acceptance"
    PENDING_ADMIN_APPROVAL = "pending_admin_approval"
    ACTIVE = "active"
    DEACTIVATED = "deactivated"


class InviteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"
    EXPIRED = "expired"


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    IN_APP = "in_app"


class PropertyRole(str, Enum):
    """Roles carried by a PropertyUser row."""
    LANDLORD = "landlord"
    PROPERTY_MANAGER = "propertymanager"
    TENANT = "tenant"
    VENDOR_ACCESS = "vendor_access"
    ADMIN_ACCESS = "admin_access"


MANAGEMENT_ROLES = frozenset(
    {PropertyRole.LANDLORD, PropertyRole.PROPERTY_MANAGER, PropertyRole.ADMIN_ACCESS}
)


class UnitStatus(str, Enum):
    """Occupancy status of a unit."""
    VACANT = "vacant"
    OCCUPIED = "occupied"
    UNAVAILABLE = "unavailable"


class PropertyType(str, Enum):
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"
    MIXED_USE = "mixed_use"
    OTHER = "other"


class Category(str, Enum):
    """Maintenance category (shared by requests, schedules and vendor services)."""
    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    HVAC = "hvac"
    APPLIANCE = "appliance"
    STRUCTURAL = "structural"
    LANDSCAPING = "landscaping"
    SECURITY = "security"
    PEST_CONTROL = "pest_control"
    CLEANING = "cleaning"
    SCHEDULED = "scheduled"
    PAINTING = "painting"
    ROOFING = "roofing"
    CARPENTRY = "carpentry"
    GENERAL_REPAIR = "general_repair"
    OTHER = "other"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RequestStatus(str, Enum):
    """Lifecycle of a one-shot maintenance request."""
    NEW = "new"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    VERIFIED = "verified"
    REOPENED = "reopened"      # behaves like NEW for subsequent events
    CANCELED = "canceled"
    ARCHIVED = "archived"


OPEN_REQUEST_STATUSES = frozenset(
    {
        RequestStatus.NEW,
        RequestStatus.REOPENED,
        RequestStatus.ASSIGNED,
        RequestStatus.IN_PROGRESS,
        RequestStatus.ON_HOLD,
    }
)

# No notifications are emitted for requests in these states.
SILENT_REQUEST_STATUSES = frozenset({RequestStatus.CANCELED, RequestStatus.ARCHIVED})


class ScheduleStatus(str, Enum):
    """Lifecycle of a scheduled maintenance task."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAUSED = "paused"
    CANCELED = "canceled"


class FrequencyType(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class AssigneeKind(str, Enum):
    """Tag of the polymorphic assignee."""
    USER = "User"
    VENDOR = "Vendor"


class EntityKind(str, Enum):
    """Owner / context kind for comments, media, history and public links."""
    REQUEST = "request"
    SCHEDULED_MAINTENANCE = "scheduled_maintenance"
    PROPERTY = "property"
    UNIT = "unit"
    USER = "user"
    VENDOR = "vendor"
    INVITE = "invite"


class VendorStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class NotificationKind(str, Enum):
    NEW_REQUEST = "new_request"
    STATUS_UPDATE = "status_update"
    NEW_COMMENT = "new_comment"
    ASSIGNMENT = "assignment"
    REMINDER_DUE = "reminder_due"
    REMINDER_OVERDUE = "reminder_overdue"
    TASK_COMPLETED = "task_completed"
    TASK_VERIFIED = "task_verified"
    USER_APPROVED = "user_approved"
    ROLE_UPDATED = "role_updated"
    MENTION = "mention"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class AuditAction(str, Enum):
    """Type of audit event."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    USER_REGISTERED = "user_registered"
    EMAIL_VERIFIED = "email_verified"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET = "password_reset"
    USER_APPROVED = "user_approved"
    USER_ROLE_UPDATED = "user_role_updated"
    USER_DEACTIVATED = "user_deactivated"
    REQUEST_ASSIGNED = "request_assigned"
    REQUEST_UNASSIGNED = "request_unassigned"
    REQUEST_STARTED = "request_started"
    REQUEST_PAUSED = "request_paused"
    REQUEST_RESUMED = "request_resumed"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_VERIFIED = "request_verified"
    REQUEST_REOPENED = "request_reopened"
    REQUEST_CANCELED = "request_canceled"
    REQUEST_ARCHIVED = "request_archived"
    FEEDBACK_SUBMITTED = "feedback_submitted"
    SCHEDULED_MAINTENANCE_STARTED = "scheduled_maintenance_started"
    SCHEDULED_MAINTENANCE_COMPLETED = "scheduled_maintenance_completed"
    SCHEDULED_MAINTENANCE_RESCHEDULED = "scheduled_maintenance_rescheduled"
    SCHEDULED_MAINTENANCE_PAUSED = "scheduled_maintenance_paused"
    SCHEDULED_MAINTENANCE_RESUMED = "scheduled_maintenance_resumed"
    SCHEDULED_MAINTENANCE_CANCELED = "scheduled_maintenance_canceled"
    SCHEDULED_MAINTENANCE_GENERATED_REQUEST = "scheduled_maintenance_generated_request"
    SCHEDULED_MAINTENANCE_OCCURRENCE_SKIPPED = "scheduled_maintenance_occurrence_skipped"
    PUBLIC_LINK_ENABLED = "public_link_enabled"
    PUBLIC_LINK_DISABLED = "public_link_disabled"
    PUBLIC_UPDATE = "public_update"
    COMMENT_ADDED = "comment_added"
    COMMENT_UPDATED = "comment_updated"
    COMMENT_DELETED = "comment_deleted"
    MEDIA_UPLOADED = "media_uploaded"
    MEDIA_DELETED = "media_deleted"
    DOCUMENT_GENERATED = "document_generated"
    NOTIFICATION_FAILED = "notification_failed"
    PROPERTY_USER_ADDED = "property_user_added"
    PROPERTY_USER_DEACTIVATED = "property_user_deactivated"
    INVITE_SENT = "invite_sent"
    INVITE_ACCEPTED = "invite_accepted"
    INVITE_REVOKED = "invite_revoked"
    REPORT_EXPORTED = "report_exported"


class JobStatus(str, Enum):
    """Status of an async job in jobs_outbox."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class DocumentType(str, Enum):
    MAINTENANCE_REPORT = "maintenance_report"
