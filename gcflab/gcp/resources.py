"""Project resources prepared by the lab.

GCPProjectResources issues the gcloud and gsutil calls that prepare a project
for the functions: enabled APIs, IAM bindings, audit log configuration, the
trigger bucket, the test VM and its optional Ops Agent and snapshot policies.
The provider owns what these calls do; this class only decides which calls to
make and which failures to tolerate.
"""

import json
import os
import tempfile
from typing import Dict, List, Optional

from gcflab.config import LabConfig
from gcflab.gcp.cli import GCloudCLI
from gcflab.gcp.config import GCPConfig
from gcflab.utils import LoggingBase

OPS_AGENT_POLICY = """agentsRule:
  packageState: installed
  version: latest
instanceFilter:
  inclusionLabels:
  - labels:
      goog-ops-agent-policy: {label}
"""


class GCPProjectResources(LoggingBase):
    @staticmethod
    def typename() -> str:
        return "GCP.Resources"

    def __init__(
        self,
        config: GCPConfig,
        lab_config: LabConfig,
        cli: GCloudCLI,
        workdir: Optional[str] = None,
    ):
        """
        Args:
            config: Resolved project settings
            lab_config: Lab defaults
            cli: Cloud SDK command runner
            workdir: Directory for temporary files; it must be visible to the CLI
        """
        super().__init__()
        self._config = config
        self._lab_config = lab_config
        self._cli = cli
        self._workdir = workdir

    @property
    def config(self) -> GCPConfig:
        return self._config

    def enable_services(self, services: Optional[List[str]] = None) -> None:
        services = services if services is not None else self._lab_config.services()
        self.logging.info("Enabling required GCP services...")
        self._cli.execute(["gcloud", "services", "enable", *services])

    def storage_service_account(self) -> Optional[str]:
        """Get the Cloud Storage service agent of the project, if it can be resolved."""
        out = self._cli.try_execute(
            ["gsutil", "kms", "serviceaccount", "-p", self._config.project_number],
            merge_stderr=False,
        )
        if not out or not out.strip():
            return None
        return out.strip().splitlines()[0].strip()

    def add_iam_binding(self, member: str, role: str) -> bool:
        """Grant a project role; failures are logged and tolerated.

        Returns:
            True if the binding was added
        """
        out = self._cli.try_execute(
            [
                "gcloud",
                "projects",
                "add-iam-policy-binding",
                self._config.project_id,
                "--member",
                member,
                "--role",
                role,
                "--condition=None",
                "--quiet",
            ]
        )
        if out is None:
            self.logging.warning(f"Could not grant {role} to {member}")
            return False
        self.logging.debug(f"Granted {role} to {member}")
        return True

    def configure_iam(self) -> Dict[str, List[str]]:
        """Grant the lab's roles to the compute, Cloud Build and Cloud Storage accounts.

        Returns:
            Roles granted successfully, per member
        """
        self.logging.info("Configuring IAM roles...")
        members = {
            f"serviceAccount:{self._config.compute_service_account}": "compute",
            f"serviceAccount:{self._config.cloudbuild_service_account}": "cloudbuild",
        }
        storage_account = self.storage_service_account()
        if storage_account:
            members[f"serviceAccount:{storage_account}"] = "storage"
        else:
            self.logging.warning("Cloud Storage service account not available, skipping it.")

        granted: Dict[str, List[str]] = {}
        for member, kind in members.items():
            for role in self._lab_config.iam_roles(kind):
                if self.add_iam_binding(member, role):
                    granted.setdefault(member, []).append(role)

        self.grant_source_bucket_access()
        self.verify_iam()
        return granted

    def source_buckets(self) -> List[str]:
        """Find the buckets where Cloud Functions (2nd gen) stores uploaded sources.

        Buckets listed in the project come first. The buckets of the lab region
        and of the extra regions in lab.json are added when they exist, even if
        the listing does not show them yet.
        """
        prefix = f"gs://gcf-v2-sources-{self._config.project_number}-"
        out = self._cli.try_execute(
            ["gsutil", "ls", "-p", self._config.project_id], merge_stderr=False
        )
        buckets = []
        for line in (out or "").splitlines():
            bucket = line.strip().rstrip("/")
            if bucket.startswith(prefix) and bucket not in buckets:
                buckets.append(bucket)

        regions = [self._config.region, *self._lab_config.source_buckets()["regions"]]
        for region in dict.fromkeys(regions):
            bucket = f"{prefix}{region}"
            if bucket in buckets:
                continue
            if self._cli.try_execute(["gsutil", "ls", bucket], merge_stderr=False) is not None:
                buckets.append(bucket)
        return buckets

    def grant_source_bucket_access(self) -> List[str]:
        """Let the build service accounts read uploaded function sources.

        Without read access to the sources bucket, Cloud Build fails to fetch
        the sources of a 2nd gen deployment. Failed grants are tolerated.

        Returns:
            Buckets the grants were attempted on
        """
        role = self._lab_config.source_buckets()["role"]
        accounts = [
            self._config.compute_service_account,
            self._config.cloudbuild_service_account,
        ]
        buckets = self.source_buckets()
        if not buckets:
            self.logging.info("No function source buckets found.")
        for bucket in buckets:
            self.logging.info(f"Granting {role} on {bucket}")
            for account in accounts:
                self._cli.try_execute(
                    ["gsutil", "iam", "ch", f"serviceAccount:{account}:{role}", bucket]
                )
        return buckets

    def verify_iam(self) -> Optional[str]:
        """Print the build roles currently bound to the compute service account."""
        roles = " ".join(self._lab_config.iam_roles("compute"))
        member = f"serviceAccount:{self._config.compute_service_account}"
        out = self._cli.try_execute(
            [
                "gcloud",
                "projects",
                "get-iam-policy",
                self._config.project_id,
                "--flatten=bindings[].members",
                f"--filter=bindings.role:({roles}) AND bindings.members:{member}",
                "--format=table(bindings.role,bindings.members)",
            ],
            merge_stderr=False,
        )
        if out:
            self.logging.info(f"IAM bindings of {member}:\n{out.rstrip()}")
        return out

    def _temporary_directory(self) -> tempfile.TemporaryDirectory:
        if self._workdir:
            os.makedirs(self._workdir, exist_ok=True)
        return tempfile.TemporaryDirectory(dir=self._workdir)

    @staticmethod
    def add_audit_config(policy: dict, service: str, log_types: List[str]) -> bool:
        """Add data access audit logs of `service` to an IAM policy.

        Returns:
            False if the policy already had an audit config for the service
        """
        audit_configs = policy.setdefault("auditConfigs", [])
        if any(cfg.get("service") == service for cfg in audit_configs):
            return False
        audit_configs.append(
            {
                "service": service,
                "auditLogConfigs": [{"logType": log_type} for log_type in log_types],
            }
        )
        return True

    def enable_audit_logs(self) -> bool:
        """Enable audit logs of the compute service, needed by the VM labeler trigger.

        Returns:
            True if the policy was updated
        """
        service = self._lab_config.audit_log_service()
        self.logging.info(f"Updating audit logging for {service}...")
        out = self._cli.execute(
            ["gcloud", "projects", "get-iam-policy", self._config.project_id, "--format=json"],
            merge_stderr=False,
        )
        policy = json.loads(out)
        if not GCPProjectResources.add_audit_config(
            policy, service, self._lab_config.audit_log_types()
        ):
            self.logging.info(f"Audit logs of {service} are already enabled.")
            return False

        with self._temporary_directory() as tmp_dir:
            policy_file = os.path.join(tmp_dir, "policy.json")
            with open(policy_file, "w") as f:
                json.dump(policy, f)
            self._cli.execute(
                [
                    "gcloud",
                    "projects",
                    "set-iam-policy",
                    self._config.project_id,
                    policy_file,
                    "--quiet",
                ]
            )
        return True

    def default_bucket(self) -> str:
        return f"gcf-gen2-storage-{self._config.project_id}"

    def ensure_bucket(self, bucket: str) -> None:
        uri = f"gs://{bucket}"
        if self._cli.try_execute(["gsutil", "ls", "-b", uri]) is not None:
            self.logging.info(f"Bucket {uri} exists.")
            return
        self._cli.execute(
            ["gsutil", "mb", "-p", self._config.project_id, "-l", self._config.region, uri]
        )
        self.logging.info(f"Created bucket {uri}.")

    def upload(self, bucket: str, filepath: str, key: str) -> None:
        self._cli.execute(["gsutil", "cp", filepath, f"gs://{bucket}/{key}"])

    def function_url(self, name: str) -> str:
        return self._cli.value(
            [
                "gcloud",
                "functions",
                "describe",
                name,
                "--gen2",
                "--region",
                self._config.region,
                "--format=value(serviceConfig.uri)",
            ]
        )

    def function_logs(self, name: str, limit: int = 50) -> Optional[str]:
        return self._cli.try_execute(
            [
                "gcloud",
                "functions",
                "logs",
                "read",
                name,
                "--region",
                self._config.region,
                "--gen2",
                f"--limit={limit}",
            ]
        )

    def delete_run_service(self, name: str) -> None:
        self._cli.try_execute(
            ["gcloud", "run", "services", "delete", name, "--region", self._config.region, "--quiet"]
        )

    def instance_exists(self, name: str) -> bool:
        return (
            self._cli.try_execute(
                ["gcloud", "compute", "instances", "describe", name, "--zone", self._config.zone]
            )
            is not None
        )

    def instance_parameters(self, name: str) -> List[str]:
        instance = self._lab_config.instance()
        labels = ",".join(f"{key}={value}" for key, value in instance["labels"].items())
        disk = ",".join(
            [
                "auto-delete=yes",
                "boot=yes",
                f"device-name={name}",
                f"image-family={instance['image_family']}",
                f"image-project={instance['image_project']}",
                "mode=rw",
                f"size={instance['disk_size']}",
                "type=pd-balanced",
            ]
        )
        return [
            f"--project={self._config.project_id}",
            f"--zone={self._config.zone}",
            f"--machine-type={instance['machine_type']}",
            "--network-interface=network-tier=PREMIUM,stack-type=IPV4_ONLY,subnet=default",
            "--metadata=enable-osconfig=TRUE,enable-oslogin=true",
            "--maintenance-policy=MIGRATE",
            "--provisioning-model=STANDARD",
            f"--service-account={self._config.compute_service_account}",
            "--scopes=" + ",".join(instance["scopes"]),
            f"--create-disk={disk}",
            "--no-shielded-secure-boot",
            "--shielded-vtpm",
            "--shielded-integrity-monitoring",
            f"--labels={labels}",
            "--reservation-affinity=any",
        ]

    def create_ops_agent_policy(self) -> bool:
        """Install the Ops Agent on VMs carrying the lab's agent policy label.

        Optional; failures, e.g., missing permissions, are tolerated.

        Returns:
            True if the policy was created
        """
        label = self._lab_config.instance()["labels"]["goog-ops-agent-policy"]
        policy_name = f"goog-ops-agent-{label}-{self._config.zone}"
        with self._temporary_directory() as tmp_dir:
            policy_file = os.path.join(tmp_dir, "config.yaml")
            with open(policy_file, "w") as f:
                f.write(OPS_AGENT_POLICY.format(label=label))
            out = self._cli.try_execute(
                [
                    "gcloud",
                    "compute",
                    "instances",
                    "ops-agents",
                    "policies",
                    "create",
                    policy_name,
                    f"--zone={self._config.zone}",
                    f"--file={policy_file}",
                ]
            )
        return out is not None

    def create_snapshot_schedule(self) -> Optional[str]:
        """Create the daily snapshot schedule of the lab region.

        Returns:
            Full name of the resource policy, or None if it could not be created
        """
        schedule = self._lab_config.snapshot_schedule()
        out = self._cli.try_execute(
            [
                "gcloud",
                "compute",
                "resource-policies",
                "create",
                "snapshot-schedule",
                schedule["name"],
                f"--region={self._config.region}",
                f"--max-retention-days={schedule['max_retention_days']}",
                "--on-source-disk-delete=keep-auto-snapshots",
                "--daily-schedule",
                f"--start-time={schedule['start_time']}",
            ]
        )
        if out is None:
            return None
        return (
            f"projects/{self._config.project_id}/regions/{self._config.region}"
            f"/resourcePolicies/{schedule['name']}"
        )

    def attach_snapshot_schedule(self, disk: str) -> bool:
        """Take daily snapshots of a disk; failures are tolerated.

        Returns:
            True if the schedule was attached
        """
        policy = self.create_snapshot_schedule()
        if policy is None:
            self.logging.warning(f"Snapshot schedule not available, {disk} is not backed up.")
            return False
        out = self._cli.try_execute(
            [
                "gcloud",
                "compute",
                "disks",
                "add-resource-policies",
                disk,
                f"--zone={self._config.zone}",
                f"--resource-policies={policy}",
            ]
        )
        return out is not None

    def recreate_instance(self, name: Optional[str] = None) -> str:
        """Create the test VM, deleting a previous instance of the same name first.

        Returns:
            Description of the new instance
        """
        name = name or self._lab_config.instance()["name"]
        if self.instance_exists(name):
            self.logging.warning(f"{name} exists. Deleting first...")
            self._cli.execute(
                [
                    "gcloud",
                    "compute",
                    "instances",
                    "delete",
                    name,
                    "--zone",
                    self._config.zone,
                    "--quiet",
                ]
            )
        self.logging.info(f"Creating VM instance {name}...")
        self._cli.execute(
            ["gcloud", "compute", "instances", "create", name, *self.instance_parameters(name)]
        )
        self.create_ops_agent_policy()
        self.attach_snapshot_schedule(name)
        return self._cli.execute(
            [
                "gcloud",
                "compute",
                "instances",
                "describe",
                name,
                "--zone",
                self._config.zone,
                "--format=text(name,status,tags,labels)",
            ]
        )
