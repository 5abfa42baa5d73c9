"""
gcflab: Cloud Functions lab automation.

This package deploys serverless functions with bounded retries and automates
the surrounding lab on Google Cloud: enabling APIs, granting IAM roles,
deploying HTTP, storage and audit-log triggered functions, and creating the
VM that the labeler function reacts to.
"""

from .version import __version__  # noqa
from .config import LabConfig  # noqa
from .faas import DeploymentFailed, DeploymentRequest, DeploymentResult, RetryingDeployer  # noqa
