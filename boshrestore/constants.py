"""Shared constants."""

CHANGES_TOPIC = "boshrestore.changes"

OPERATION_RESTORE = "restore"

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_POLL_MAX_INTERVAL = 60.0
DEFAULT_POLL_BACKOFF = 1.5

# Seconds
DEFAULT_TIMEOUTS = {
    "stop_deployment": 1800.0,
    "create_disk": 1800.0,
    "attach_disk": 1800.0,
    "run_errand": 3600.0,
    "start_deployment": 1800.0,
}

DEFAULT_PATCH_ATTEMPTS = 3
# Longer than the longest operation timeout
DEFAULT_STALL_AFTER = 4200.0

JOB_RESTORE = "restore"
JOB_OPERATION_STATUS_POLLER = "operation_status_poller"
