"""Configuration of the Google Cloud project used by the lab.

The lab needs the project id and number, a region and a zone. Values given by
the user win; everything else is discovered through gcloud:

1. project id from `gcloud config get-value project`,
2. project number from `gcloud projects describe`,
3. region and zone from the project's compute metadata,
4. otherwise from the `compute/region` and `compute/zone` gcloud properties,
5. otherwise the region is derived from the zone, then falls back to the
   default region, and the zone falls back to `{region}-a`.

Classes:
    GCPConfig: Resolved project settings passed explicitly to every lab step

Example:
    Resolving the configuration of the active project:

        config = GCPConfig.resolve(GCloudCLI(), {"region": "us-east1"})
        config.apply(cli)
"""

from typing import Dict, Optional, Tuple

from gcflab.gcp.cli import GCloudCLI
from gcflab.utils import LoggingBase


class GCPConfig(LoggingBase):
    """Project settings of a lab run.

    Attributes:
        project_id: GCP project ID
        project_number: Numeric project identifier, used in service account names
        region: Region of functions and buckets
        zone: Zone of the test VM
        credentials: Optional path to a service account JSON file
    """

    DEFAULT_REGION = "us-central1"

    @staticmethod
    def typename() -> str:
        return "GCP.Config"

    def __init__(
        self,
        project_id: str,
        project_number: str,
        region: str,
        zone: str,
        credentials: Optional[str] = None,
    ):
        super().__init__()
        self.project_id = project_id
        self.project_number = project_number
        self.region = region
        self.zone = zone
        self.credentials = credentials

    @property
    def compute_service_account(self) -> str:
        return f"{self.project_number}-compute@developer.gserviceaccount.com"

    @property
    def cloudbuild_service_account(self) -> str:
        return f"{self.project_number}@cloudbuild.gserviceaccount.com"

    @staticmethod
    def default_location(
        region: str, zone: str, default_region: str = DEFAULT_REGION
    ) -> Tuple[str, str]:
        """Fill in a missing region or zone.

        The region of a zone is the zone name without its last segment,
        e.g., us-east1-b is in us-east1.
        """
        if not region and zone:
            region = zone.rsplit("-", 1)[0]
        region = region or default_region
        zone = zone or f"{region}-a"
        return region, zone

    @staticmethod
    def resolve(
        cli: GCloudCLI,
        config: Optional[Dict] = None,
        default_region: str = DEFAULT_REGION,
    ) -> "GCPConfig":
        """Build the configuration from user values and gcloud discovery.

        Args:
            cli: Cloud SDK command runner
            config: Optional user values: project_id, project_number, region,
                zone, credentials
            default_region: Region used when nothing else is known

        Returns:
            Resolved configuration

        Raises:
            RuntimeError: If the project id or project number cannot be determined
        """
        config = config or {}

        project_id = config.get("project_id") or cli.value(
            ["gcloud", "config", "get-value", "project"]
        )
        if not project_id:
            raise RuntimeError(
                "No GCP project is configured! Set it with "
                "'gcloud config set project' or pass --project."
            )

        project_number = str(config.get("project_number") or "") or cli.value(
            ["gcloud", "projects", "describe", project_id, "--format=value(projectNumber)"]
        )
        if not project_number:
            raise RuntimeError(f"Could not determine the project number of {project_id}!")

        zone = config.get("zone") or cli.value(
            [
                "gcloud",
                "compute",
                "project-info",
                "describe",
                "--format=value(commonInstanceMetadata.items[google-compute-default-zone])",
            ]
        )
        region = config.get("region") or cli.value(
            [
                "gcloud",
                "compute",
                "project-info",
                "describe",
                "--format=value(commonInstanceMetadata.items[google-compute-default-region])",
            ]
        )
        if not region or not zone:
            zone = zone or cli.value(["gcloud", "config", "get-value", "compute/zone"])
            region = region or cli.value(["gcloud", "config", "get-value", "compute/region"])
            region, zone = GCPConfig.default_location(region, zone, default_region)

        ret = GCPConfig(project_id, project_number, region, zone, config.get("credentials"))
        ret.logging.info(f"Project: {ret.project_id} ({ret.project_number})")
        ret.logging.info(f"Region : {ret.region}")
        ret.logging.info(f"Zone   : {ret.zone}")
        return ret

    def apply(self, cli: GCloudCLI) -> None:
        """Store the resolved region and zone as gcloud defaults."""
        cli.execute(["gcloud", "config", "set", "compute/region", self.region, "--quiet"])
        cli.execute(["gcloud", "config", "set", "compute/zone", self.zone, "--quiet"])

    def serialize(self) -> Dict:
        out = {
            "project_id": self.project_id,
            "project_number": self.project_number,
            "region": self.region,
            "zone": self.zone,
        }
        if self.credentials:
            out["credentials"] = self.credentials
        return out

    @staticmethod
    def deserialize(config: Dict) -> "GCPConfig":
        """Create the configuration from a complete dictionary.

        Raises:
            KeyError: If one of the required settings is missing
        """
        return GCPConfig(
            config["project_id"],
            str(config["project_number"]),
            config["region"],
            config["zone"],
            config.get("credentials"),
        )
