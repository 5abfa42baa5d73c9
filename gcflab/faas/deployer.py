"""Retrying deployment of named serverless resources.

This module defines the deploy invocation boundary and the retry driver built on
top of it. A deploy invocation is one attempt to bring a named remote resource
into existence (or into a running state) through the provider's control plane.
The driver repeats the invocation with a fixed delay until it succeeds or the
attempt bound is exhausted.

Failures are not distinguished by cause: a transient network error and a
permanent misconfiguration are retried the same way. Partially created
resources are never cleaned up between attempts; repeated invocations rely on
the provider treating the same name idempotently.

Classes:
    DeploymentRequest: Immutable name and forwarded parameters of a deployment
    DeploymentAttempt: Outcome of a single deploy invocation
    DeploymentResult: Terminal outcome returned to the caller
    DeploymentFailed: Raised when a caller requires success after exhaustion
    Deployer: Abstract deploy invocation capability
    RetryingDeployer: Bounded retry driver over a Deployer

Example:
    Deploying with the default policy of 5 attempts, 30 seconds apart:

        retrying = RetryingDeployer(GCloudFunctionDeployer(cli))
        result = retrying.deploy(DeploymentRequest("my-function", ("--gen2",)))
        result.raise_for_status()
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from gcflab.utils import LoggingBase


@dataclass(frozen=True)
class DeploymentRequest:
    """Name and deployment parameters of a single resource.

    Attributes:
        name: Identifier of the remote resource, reused on every attempt
        parameters: Flags and values forwarded verbatim to the deploy call
    """

    name: str
    parameters: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.name:
            raise ValueError("Deployment name must not be empty!")
        # accept any sequence, but store an immutable copy
        object.__setattr__(self, "parameters", tuple(self.parameters))

    def serialize(self) -> dict:
        return {"name": self.name, "parameters": list(self.parameters)}

    @staticmethod
    def deserialize(cached_obj: dict) -> "DeploymentRequest":
        return DeploymentRequest(cached_obj["name"], tuple(cached_obj.get("parameters", [])))


@dataclass(frozen=True)
class DeploymentAttempt:
    sequence: int
    succeeded: bool


@dataclass(frozen=True)
class DeploymentResult:
    """Terminal outcome of a retried deployment.

    Attributes:
        name: Name of the deployed resource
        succeeded: True if and only if one of the attempts succeeded
        attempts_made: Number of deploy invocations, between 1 and the attempt bound
    """

    name: str
    succeeded: bool
    attempts_made: int

    def raise_for_status(self) -> "DeploymentResult":
        """Raise DeploymentFailed unless the deployment succeeded.

        Returns:
            This result, to allow chaining

        Raises:
            DeploymentFailed: If all attempts failed
        """
        if not self.succeeded:
            raise DeploymentFailed(self.name, self.attempts_made)
        return self

    def serialize(self) -> dict:
        return {
            "name": self.name,
            "succeeded": self.succeeded,
            "attempts_made": self.attempts_made,
        }


class DeploymentFailed(RuntimeError):
    """All attempts to deploy a resource have failed."""

    def __init__(self, name: str, attempts_made: int):
        super().__init__(f"Failed to deploy {name} after {attempts_made} attempts!")
        self.name = name
        self.attempts_made = attempts_made


class Deployer(ABC, LoggingBase):
    """Deploy invocation capability.

    Implementations perform a single, synchronous and blocking attempt to deploy
    the resource and report a coarse success or failure. They never retry.
    """

    def __init__(self):
        super().__init__()

    @abstractmethod
    def deploy(self, name: str, parameters: Sequence[str]) -> bool:
        """Perform one deploy invocation.

        Args:
            name: Identifier of the remote resource
            parameters: Flags and values forwarded verbatim

        Returns:
            True if the provider reported success
        """
        pass


class RetryingDeployer(LoggingBase):
    """Retries a deploy invocation up to a bounded number of attempts.

    The driver holds no state across deployments: every call to deploy starts a
    new attempt counter. Attempts are strictly sequential and the delay between
    them is a plain blocking sleep. No per-attempt timeout is enforced here; a
    deploy call that never returns stalls the driver.

    Attributes:
        deployer: The deploy invocation capability
        max_attempts: Maximum number of deploy invocations per request
        delay: Seconds to wait between a failed attempt and the next one
    """

    DEFAULT_MAX_ATTEMPTS = 5
    DEFAULT_DELAY = 30.0

    @staticmethod
    def typename() -> str:
        return "RetryingDeployer"

    def __init__(
        self,
        deployer: Deployer,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        delay: float = DEFAULT_DELAY,
        observer: Optional[Callable[[DeploymentRequest, DeploymentAttempt], None]] = None,
    ):
        """Initialize the retry driver.

        Args:
            deployer: The deploy invocation capability
            max_attempts: Maximum number of attempts, at least 1
            delay: Non-negative number of seconds between attempts
            observer: Optional callback receiving every finished attempt

        Raises:
            ValueError: If the attempt bound or the delay are out of range
        """
        super().__init__()
        if max_attempts < 1:
            raise ValueError(f"Number of attempts must be positive, got {max_attempts}!")
        if delay < 0:
            raise ValueError(f"Delay between attempts must not be negative, got {delay}!")
        self.deployer = deployer
        self.max_attempts = max_attempts
        self.delay = delay
        self._observer = observer

    def _attempt(self, request: DeploymentRequest) -> bool:
        try:
            return bool(self.deployer.deploy(request.name, request.parameters))
        except Exception as e:
            # an exception from the deploy call is just another failed attempt
            self.logging.debug(f"Deploy call for {request.name} raised: {e}")
            return False

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        """Deploy the resource, retrying on failure.

        Returns as soon as one attempt succeeds. After the final failed attempt
        no delay is applied.

        Args:
            request: The resource to deploy

        Returns:
            The final outcome; it is never raised as an exception here
        """
        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            self.logging.warning(f"Attempt {attempts}: Deploying {request.name}...")
            succeeded = self._attempt(request)
            if self._observer is not None:
                self._observer(request, DeploymentAttempt(attempts, succeeded))

            if succeeded:
                self.logging.info(f"{request.name} deployed successfully!")
                return DeploymentResult(request.name, True, attempts)

            if attempts == self.max_attempts:
                break

            self.logging.error(f"Deployment failed. Retrying in {self.delay} seconds...")
            if self.delay > 0:
                time.sleep(self.delay)

        self.logging.error(f"Failed to deploy {request.name} after {self.max_attempts} attempts")
        return DeploymentResult(request.name, False, self.max_attempts)

    def deploy_or_raise(self, request: DeploymentRequest) -> DeploymentResult:
        """Deploy the resource and raise DeploymentFailed when all attempts fail."""
        return self.deploy(request).raise_for_status()
