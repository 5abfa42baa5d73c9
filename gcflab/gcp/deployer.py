"""Cloud Functions deployment through the gcloud CLI.

Success of a deploy invocation is the exit status 0 of
`gcloud functions deploy NAME --quiet PARAMS...`. A function that already
exists is redeployed under the same name; creating and updating it are not
distinguished.
"""

from typing import Optional, Sequence

from gcflab.faas.deployer import Deployer
from gcflab.gcp.cli import GCloudCLI


class GCloudFunctionDeployer(Deployer):
    """Deploys Cloud Functions by shelling out to gcloud.

    Attributes:
        cli: Cloud SDK command runner
        timeout: Optional per-attempt timeout in seconds; an attempt running
            longer is killed and counts as failed
        source_dir: Optional working directory of the deploy command, which
            resolves a relative `--source .`
    """

    @staticmethod
    def typename() -> str:
        return "GCP.FunctionDeployer"

    def __init__(
        self,
        cli: GCloudCLI,
        timeout: Optional[float] = None,
        source_dir: Optional[str] = None,
    ):
        super().__init__()
        self.cli = cli
        self.timeout = timeout
        self.source_dir = source_dir

    @staticmethod
    def command(name: str, parameters: Sequence[str]) -> list:
        return ["gcloud", "functions", "deploy", name, "--quiet", *parameters]

    def deploy(self, name: str, parameters: Sequence[str]) -> bool:
        try:
            self.cli.execute(
                GCloudFunctionDeployer.command(name, parameters),
                cwd=self.source_dir,
                timeout=self.timeout,
            )
        except RuntimeError as e:
            self.logging.debug(str(e))
            return False
        return True
