"""Provider-independent deployment abstractions.

Key components:
- Deployer: a single deploy invocation against the provider's control plane
- RetryingDeployer: bounded, sequential retries with a fixed delay
- DeploymentRequest / DeploymentResult: input and terminal outcome of a deployment
- DeploymentFailed: raised when a caller requires success after all attempts failed
"""

from .deployer import (  # noqa
    Deployer,
    DeploymentAttempt,
    DeploymentFailed,
    DeploymentRequest,
    DeploymentResult,
    RetryingDeployer,
)
