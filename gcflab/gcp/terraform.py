"""Cloud SQL with Terraform lab.

The lab archive is copied from Cloud Storage, unpacked, and applied with
Terraform. The project and region are handed to Terraform as `TF_VAR_project`
and `TF_VAR_region` in the environment of the terraform commands only.
"""

import os
import zipfile
from typing import Dict, Optional

from gcflab.gcp.cli import GCloudCLI
from gcflab.utils import LoggingBase, execute


class TerraformLab(LoggingBase):

    ARCHIVE = "gs://spls/gsp234/gsp234.zip"

    @staticmethod
    def typename() -> str:
        return "GCP.Terraform"

    def __init__(
        self,
        cli: GCloudCLI,
        project: str,
        region: str,
        workdir: str,
        archive: str = ARCHIVE,
    ):
        super().__init__()
        self.cli = cli
        self.project = project
        self.region = region
        self.workdir = os.path.abspath(os.path.expanduser(workdir))
        self.archive = archive

    def environment(self, base: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        env = dict(os.environ if base is None else base)
        env["TF_VAR_region"] = self.region
        env["TF_VAR_project"] = self.project
        return env

    def fetch(self) -> str:
        """Download and unpack the lab archive into the working directory.

        Returns:
            Path of the downloaded archive
        """
        os.makedirs(self.workdir, exist_ok=True)
        self.cli.execute(["gsutil", "cp", "-r", self.archive, "."], cwd=self.workdir)
        archive_path = os.path.join(self.workdir, os.path.basename(self.archive))
        with zipfile.ZipFile(archive_path) as archive:
            archive.extractall(self.workdir)
        self.logging.info(f"Unpacked {archive_path}")
        return archive_path

    def terraform(self, *args: str) -> str:
        out = execute(["terraform", *args], cwd=self.workdir, env=self.environment())
        self.logging.debug(out.rstrip())
        return out

    def run(self) -> None:
        self.fetch()
        self.terraform("init")
        self.terraform("plan", "-out=tfplan")
        self.terraform("apply", "tfplan")
        self.logging.info("Terraform lab applied.")
