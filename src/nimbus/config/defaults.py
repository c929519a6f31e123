"""Default values for Nimbus projects and provisioning."""

from nimbus.lib.polling import PollPolicy

DEFAULT_PROJECT_FILE = "nimbus.yaml"
DEFAULT_PROJECT_NAME = "nimbus-app"
DEFAULT_STAGE = "dev"
DEFAULT_REGION = "us-east-1"

# Backend profile
BACKEND_PROFILE_NAME = ".nimbusrc"
BACKEND_PROFILE_ENV = "NIMBUS_CONFIG"

# Compute function defaults
DEFAULT_RUNTIME = "python3.12"
DEFAULT_MEMORY_MB = 128
DEFAULT_TIMEOUT_S = 30
WORKER_MEMORY_MB = 256
TIMER_WORKER_TIMEOUT_S = 300

# Queue defaults
DEFAULT_BATCH_SIZE = 10
DEFAULT_VISIBILITY_TIMEOUT_S = 30
QUEUE_RETENTION_S = 345600  # 4 days
DLQ_RETENTION_S = 1209600  # 14 days
DLQ_MAX_RECEIVES = 3

# Gateway defaults
AUTHORIZER_TTL_S = 300
AUTHORIZER_IDENTITY_SOURCE = "method.request.header.Authorization"
CERTIFICATE_REGION = "us-east-1"

# Poll loop defaults, overridable under ``polling:`` in the project file.
DEFAULT_POLL_POLICIES: dict[str, PollPolicy] = {
    "role_propagation": PollPolicy(interval=3.0, max_attempts=20, warmup_attempts=7),
    "function_update": PollPolicy(interval=1.0, max_attempts=60),
    "table_active": PollPolicy(interval=1.0, max_attempts=30),
    "cluster_active": PollPolicy(interval=5.0, max_attempts=60),
    "validation_records": PollPolicy(interval=2.0, max_attempts=15),
    "certificate_issued": PollPolicy(interval=5.0, max_attempts=120),
    "state_lock": PollPolicy(interval=1.0, max_attempts=30),
}
