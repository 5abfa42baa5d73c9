from typing import Dict, List, Optional, Sequence

from gcflab.faas.deployer import Deployer
from gcflab.gcp.cli import GCloudCLI


class ScriptedDeployer(Deployer):
    """Fails a fixed number of times, then succeeds (or never does)."""

    def __init__(self, failures: int = 0, always_fail: bool = False, error: bool = False):
        super().__init__()
        self.failures = failures
        self.always_fail = always_fail
        self.error = error
        self.calls: List[tuple] = []

    def deploy(self, name: str, parameters: Sequence[str]) -> bool:
        self.calls.append((name, tuple(parameters)))
        if self.always_fail or len(self.calls) <= self.failures:
            if self.error:
                raise RuntimeError(f"deployment of {name} broke")
            return False
        return True


class FakeCLI(GCloudCLI):
    """Records commands and answers them by prefix instead of running them."""

    def __init__(
        self,
        responses: Optional[Dict[str, str]] = None,
        failures: Sequence[str] = (),
    ):
        super().__init__()
        self.responses = responses or {}
        self.failures = list(failures)
        self.commands: List[List[str]] = []
        self.cwds: List[Optional[str]] = []
        self.timeouts: List[Optional[float]] = []

    def execute(self, cmd, cwd=None, timeout=None, merge_stderr=True) -> str:
        self.commands.append(list(cmd))
        self.cwds.append(cwd)
        self.timeouts.append(timeout)
        joined = " ".join(cmd)
        for prefix in self.failures:
            if joined.startswith(prefix):
                raise RuntimeError(f"Running command '{joined}' failed with exit code 1!")
        for prefix, out in self.responses.items():
            if joined.startswith(prefix):
                return out
        return ""

    def ran(self, prefix: str) -> List[List[str]]:
        return [cmd for cmd in self.commands if " ".join(cmd).startswith(prefix)]
