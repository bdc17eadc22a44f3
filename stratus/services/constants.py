SERVICE_STATUS_PENDING = "pending"
SERVICE_STATUS_PROVISIONING = "provisioning"
SERVICE_STATUS_RUNNING = "running"
SERVICE_STATUS_FAILED = "failed"
SERVICE_STATUS_STOPPED = "stopped"

SERVICE_STATUSES = (
    SERVICE_STATUS_PENDING,
    SERVICE_STATUS_PROVISIONING,
    SERVICE_STATUS_RUNNING,
    SERVICE_STATUS_FAILED,
    SERVICE_STATUS_STOPPED,
)

RELEASE_STATUS_RUNNING = "running"
RELEASE_STATUS_FAILED = "failed"
RELEASE_STATUS_PROVISIONING = "provisioning"
RELEASE_STATUS_UNKNOWN = "unknown"

ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"

ROLES = (ROLE_OWNER, ROLE_ADMIN, ROLE_MEMBER)
MANAGE_ROLES = (ROLE_OWNER, ROLE_ADMIN)

SECRET_MASK = "***MASKED***"
