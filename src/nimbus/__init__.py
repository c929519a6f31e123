"""Nimbus - Deploy serverless applications to AWS from code or YAML.

Nimbus provisions Lambda functions, REST APIs, DynamoDB tables, DSQL
clusters, S3 buckets, SQS queues, EventBridge schedules, secrets and
parameters, wires them together through one shared IAM role, and records
everything in a locked S3 state document.

Main features:
- Declare resources in Python (``Nimbus``) or in ``nimbus.yaml``
- Idempotent deploys that resume after a failure
- Destroy from recorded state, keeping data stores unless forced
- Custom domains with DNS-validated certificates
"""

from nimbus.lib.errors import ConfigError, DeploymentError, NimbusError, ValidationError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConfigError",
    "DeploymentError",
    "NimbusError",
    "ValidationError",
]
