import unittest
from unittest.mock import patch

from gcflab.faas.deployer import (
    DeploymentAttempt,
    DeploymentFailed,
    DeploymentRequest,
    DeploymentResult,
    RetryingDeployer,
)
from fakes import ScriptedDeployer

REQUEST = DeploymentRequest("nodejs-http-function", ("--gen2", "--trigger-http"))


class TestRetryingDeployer(unittest.TestCase):
    def test_always_succeeds_needs_one_attempt(self):
        for max_attempts in range(1, 7):
            fake = ScriptedDeployer()
            result = RetryingDeployer(fake, max_attempts=max_attempts, delay=0).deploy(REQUEST)
            self.assertTrue(result.succeeded)
            self.assertEqual(result.attempts_made, 1)
            self.assertEqual(len(fake.calls), 1)

    def test_succeeds_after_failures(self):
        max_attempts = 5
        for k in range(1, max_attempts + 1):
            fake = ScriptedDeployer(failures=k - 1)
            result = RetryingDeployer(fake, max_attempts=max_attempts, delay=0).deploy(REQUEST)
            self.assertTrue(result.succeeded)
            self.assertEqual(result.attempts_made, k)
            self.assertEqual(len(fake.calls), k)

    def test_always_fails_exhausts_attempts(self):
        for max_attempts in range(1, 7):
            fake = ScriptedDeployer(always_fail=True)
            result = RetryingDeployer(fake, max_attempts=max_attempts, delay=0).deploy(REQUEST)
            self.assertFalse(result.succeeded)
            self.assertEqual(result.attempts_made, max_attempts)
            self.assertEqual(len(fake.calls), max_attempts)

    def test_third_attempt_succeeds(self):
        fake = ScriptedDeployer(failures=2)
        result = RetryingDeployer(fake, max_attempts=5, delay=0).deploy(REQUEST)
        self.assertEqual(result, DeploymentResult("nodejs-http-function", True, 3))
        self.assertEqual(len(fake.calls), 3)

    def test_three_failures(self):
        fake = ScriptedDeployer(always_fail=True)
        result = RetryingDeployer(fake, max_attempts=3, delay=0).deploy(REQUEST)
        self.assertEqual(result, DeploymentResult("nodejs-http-function", False, 3))
        self.assertEqual(len(fake.calls), 3)

    def test_no_state_across_requests(self):
        fake = ScriptedDeployer()
        deployer = RetryingDeployer(fake, max_attempts=5, delay=0)
        first = deployer.deploy(REQUEST)
        second = deployer.deploy(REQUEST)
        self.assertEqual(first.attempts_made, 1)
        self.assertEqual(second.attempts_made, 1)
        self.assertEqual(len(fake.calls), 2)

    def test_parameters_are_forwarded_verbatim(self):
        fake = ScriptedDeployer(failures=1)
        request = DeploymentRequest("fn", ["--source", ".", "--trigger-event-filters=a=b,c"])
        RetryingDeployer(fake, max_attempts=2, delay=0).deploy(request)
        expected = ("fn", ("--source", ".", "--trigger-event-filters=a=b,c"))
        self.assertEqual(fake.calls, [expected, expected])

    def test_exception_counts_as_failed_attempt(self):
        fake = ScriptedDeployer(failures=1, error=True)
        result = RetryingDeployer(fake, max_attempts=3, delay=0).deploy(REQUEST)
        self.assertTrue(result.succeeded)
        self.assertEqual(result.attempts_made, 2)

    def test_sleeps_between_attempts_only(self):
        fake = ScriptedDeployer(always_fail=True)
        with patch("gcflab.faas.deployer.time.sleep") as sleep:
            RetryingDeployer(fake, max_attempts=3, delay=30).deploy(REQUEST)
        self.assertEqual(sleep.call_count, 2)
        sleep.assert_called_with(30)

    def test_no_sleep_after_success(self):
        fake = ScriptedDeployer(failures=1)
        with patch("gcflab.faas.deployer.time.sleep") as sleep:
            RetryingDeployer(fake, max_attempts=5, delay=12.5).deploy(REQUEST)
        sleep.assert_called_once_with(12.5)

    def test_observer_sees_every_attempt(self):
        seen = []
        fake = ScriptedDeployer(failures=2)
        deployer = RetryingDeployer(
            fake, max_attempts=5, delay=0, observer=lambda req, attempt: seen.append(attempt)
        )
        deployer.deploy(REQUEST)
        self.assertEqual(
            seen,
            [
                DeploymentAttempt(1, False),
                DeploymentAttempt(2, False),
                DeploymentAttempt(3, True),
            ],
        )

    def test_deploy_or_raise(self):
        fake = ScriptedDeployer(always_fail=True)
        deployer = RetryingDeployer(fake, max_attempts=2, delay=0)
        with self.assertRaises(DeploymentFailed) as ctx:
            deployer.deploy_or_raise(REQUEST)
        self.assertEqual(ctx.exception.name, "nodejs-http-function")
        self.assertEqual(ctx.exception.attempts_made, 2)
        self.assertIn("after 2 attempts", str(ctx.exception))

        result = RetryingDeployer(ScriptedDeployer(), delay=0).deploy_or_raise(REQUEST)
        self.assertTrue(result.succeeded)

    def test_invalid_bounds(self):
        with self.assertRaises(ValueError):
            RetryingDeployer(ScriptedDeployer(), max_attempts=0)
        with self.assertRaises(ValueError):
            RetryingDeployer(ScriptedDeployer(), delay=-1)

    def test_defaults(self):
        deployer = RetryingDeployer(ScriptedDeployer())
        self.assertEqual(deployer.max_attempts, 5)
        self.assertEqual(deployer.delay, 30)


class TestDeploymentRequest(unittest.TestCase):
    def test_empty_name(self):
        with self.assertRaises(ValueError):
            DeploymentRequest("")

    def test_immutable(self):
        request = DeploymentRequest("fn", ["--gen2"])
        self.assertEqual(request.parameters, ("--gen2",))
        with self.assertRaises(AttributeError):
            request.name = "other"

    def test_serialization(self):
        request = DeploymentRequest("fn", ("--gen2", "--region", "us-east1"))
        self.assertEqual(DeploymentRequest.deserialize(request.serialize()), request)


if __name__ == "__main__":
    unittest.main()
