"""
Constants shared by operators, pollers and tasks.

Resource groups and types mirror the catalogue of the resource store.
Intervals are in seconds.
"""


class ResourceGroup:
    """Resource groups known to the engine."""
    BACKUP = "backup.servicefabrik.io"
    DEPLOYMENT = "deployment.servicefabrik.io"
    LOCK = "lock.servicefabrik.io"
    RESTORE = "restore.servicefabrik.io"
    SERVICEFLOW = "serviceflow.servicefabrik.io"


class ResourceType:
    """Resource types known to the engine."""
    DEFAULT_BACKUP = "defaultbackups"
    DEFAULT_RESTORE = "defaultrestores"
    DIRECTOR = "directors"
    DEPLOYMENT_LOCKS = "deploymentlocks"
    TASK = "tasks"
    SERIAL_SERVICE_FLOW = "serialserviceflows"


# Operator metadata keys
LOCKED_BY_MANAGER = "lockedByManager"
PROCESSING_STARTED_AT = "processingStartedAt"
DEPLOYMENT_NAME = "deploymentName"
NETWORK_SEGMENT_INDEX = "networkSegmentIndex"
ABORT_REQUESTED_AT = "abortRequestedAt"

# Label mirrored from status.state by the store
STATE_LABEL = "state"
INSTANCE_GUID_LABEL = "instance_guid"
SERVICEFLOW_ID_LABEL = "serviceflow_id"

# Watch / poll defaults
WATCH_TIMEOUT = 600
WATCH_EVENT_HISTORY = 10000
WATCHER_ERROR_DELAY = 30
POLL_INTERVAL = 50
DEFAULT_WORKER_LIMIT = 10

# Conflict handling
RETRY_DELAY = 2
MAX_CONFLICT_RETRIES = 3
MAX_RETRY_UNLOCK = 3

# Locks
DEFAULT_LOCK_TTL = 86400

DEFAULT_TIMEOUTS = {
    "task": 86400,
    "backup": 86400,
    "restore": 86400,
    "deployment": 3600,
    "serviceflow": 172800,
}

# Deployment naming
SERVICE_FABRIK_PREFIX = "service-fabrik"
NETWORK_SEGMENT_LENGTH = 4

# Add-on job
IPTABLES_MANAGER = "iptables-manager"
IPTABLES_MANAGER_RELEASE = "service-fabrik"
