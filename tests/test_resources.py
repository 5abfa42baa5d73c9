import json
import os
import tempfile
import unittest

from gcflab.config import LabConfig
from gcflab.gcp.config import GCPConfig
from gcflab.gcp.resources import GCPProjectResources
from fakes import FakeCLI


class RecordingCLI(FakeCLI):
    """Keeps the policy files passed to set-iam-policy before they are removed."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.policies = []

    def execute(self, cmd, cwd=None, timeout=None, merge_stderr=True) -> str:
        if list(cmd[:3]) == ["gcloud", "projects", "set-iam-policy"]:
            with open(cmd[4]) as f:
                self.policies.append(json.load(f))
        return super().execute(cmd, cwd, timeout, merge_stderr)


class TestGCPProjectResources(unittest.TestCase):
    def setUp(self):
        self.config = GCPConfig("my-project", "123", "us-east1", "us-east1-b")
        self.lab_config = LabConfig()
        self.tmp_dir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp_dir.cleanup()

    def resources(self, cli):
        return GCPProjectResources(self.config, self.lab_config, cli, self.tmp_dir.name)

    def test_enable_services(self):
        cli = FakeCLI()
        self.resources(cli).enable_services(["run.googleapis.com", "eventarc.googleapis.com"])
        self.assertEqual(
            cli.commands,
            [["gcloud", "services", "enable", "run.googleapis.com", "eventarc.googleapis.com"]],
        )

    def test_configure_iam_tolerates_failures(self):
        cli = FakeCLI(
            responses={"gsutil kms serviceaccount": "service-123@gs-project-accounts.iam\n"},
            failures=[
                "gcloud projects add-iam-policy-binding my-project "
                "--member serviceAccount:123@cloudbuild.gserviceaccount.com"
            ],
        )
        granted = self.resources(cli).configure_iam()
        self.assertEqual(
            granted["serviceAccount:123-compute@developer.gserviceaccount.com"],
            self.lab_config.iam_roles("compute"),
        )
        self.assertNotIn("serviceAccount:123@cloudbuild.gserviceaccount.com", granted)
        self.assertEqual(
            granted["serviceAccount:service-123@gs-project-accounts.iam"],
            ["roles/pubsub.publisher"],
        )
        binding = cli.ran("gcloud projects add-iam-policy-binding")[0]
        self.assertIn("--condition=None", binding)

    def test_configure_iam_without_storage_account(self):
        cli = FakeCLI(failures=["gsutil kms"])
        granted = self.resources(cli).configure_iam()
        self.assertEqual(len(granted), 2)

    def test_add_audit_config(self):
        policy = {"bindings": []}
        self.assertTrue(
            GCPProjectResources.add_audit_config(policy, "compute.googleapis.com", ["ADMIN_READ"])
        )
        self.assertEqual(
            policy["auditConfigs"],
            [
                {
                    "service": "compute.googleapis.com",
                    "auditLogConfigs": [{"logType": "ADMIN_READ"}],
                }
            ],
        )
        self.assertFalse(
            GCPProjectResources.add_audit_config(policy, "compute.googleapis.com", ["DATA_READ"])
        )
        self.assertEqual(len(policy["auditConfigs"]), 1)

    def test_enable_audit_logs(self):
        cli = RecordingCLI(
            responses={"gcloud projects get-iam-policy": json.dumps({"etag": "abc", "bindings": []})}
        )
        self.assertTrue(self.resources(cli).enable_audit_logs())
        self.assertEqual(len(cli.policies), 1)
        policy = cli.policies[0]
        self.assertEqual(policy["etag"], "abc")
        self.assertEqual(
            [c["logType"] for c in policy["auditConfigs"][0]["auditLogConfigs"]],
            ["ADMIN_READ", "DATA_READ", "DATA_WRITE"],
        )
        # the temporary policy file is gone
        self.assertEqual(os.listdir(self.tmp_dir.name), [])

    def test_audit_logs_in_new_workdir(self):
        workdir = os.path.join(self.tmp_dir.name, "new-lab", "nested")
        cli = RecordingCLI(
            responses={"gcloud projects get-iam-policy": json.dumps({"bindings": []})}
        )
        resources = GCPProjectResources(self.config, self.lab_config, cli, workdir)
        self.assertTrue(resources.enable_audit_logs())
        self.assertEqual(len(cli.policies), 1)
        self.assertTrue(os.path.isdir(workdir))

    def test_source_buckets(self):
        cli = FakeCLI(
            responses={
                "gsutil ls -p my-project": "gs://gcf-v2-sources-123-europe-west1/\n"
                "gs://other-bucket/\n"
                "gs://gcf-v2-sources-999-us-east1/\n",
            },
            failures=["gsutil ls gs://gcf-v2-sources-123-us-east1"],
        )
        self.assertEqual(
            self.resources(cli).source_buckets(), ["gs://gcf-v2-sources-123-europe-west1"]
        )
        # the lab region doubles as the extra region, it is checked once
        self.assertEqual(len(cli.ran("gsutil ls gs://gcf-v2-sources-123-us-east1")), 1)

    def test_grant_source_bucket_access(self):
        self.config.region = "us-central1"
        cli = FakeCLI(
            responses={"gsutil ls -p my-project": "gs://gcf-v2-sources-123-us-central1/\n"},
            failures=[
                "gsutil iam ch serviceAccount:123@cloudbuild.gserviceaccount.com",
            ],
        )
        buckets = self.resources(cli).grant_source_bucket_access()
        self.assertEqual(
            buckets,
            ["gs://gcf-v2-sources-123-us-central1", "gs://gcf-v2-sources-123-us-east1"],
        )
        self.assertIn(
            [
                "gsutil",
                "iam",
                "ch",
                "serviceAccount:123-compute@developer.gserviceaccount.com:objectViewer",
                "gs://gcf-v2-sources-123-us-east1",
            ],
            cli.commands,
        )
        self.assertEqual(len(cli.ran("gsutil iam ch")), 4)

    def test_no_source_buckets(self):
        cli = FakeCLI(failures=["gsutil ls"])
        self.assertEqual(self.resources(cli).grant_source_bucket_access(), [])
        self.assertFalse(cli.ran("gsutil iam ch"))

    def test_configure_iam_verifies_bindings(self):
        cli = FakeCLI(
            responses={"gcloud projects get-iam-policy": "ROLE  MEMBERS\n"},
            failures=["gsutil"],
        )
        self.resources(cli).configure_iam()
        verify = cli.ran("gcloud projects get-iam-policy my-project --flatten")
        self.assertEqual(len(verify), 1)
        self.assertIn(
            "--filter=bindings.role:(roles/cloudbuild.builds.builder "
            "roles/artifactregistry.writer roles/logging.logWriter "
            "roles/eventarc.eventReceiver) AND "
            "bindings.members:serviceAccount:123-compute@developer.gserviceaccount.com",
            verify[0],
        )

    def test_verify_iam_failure_is_tolerated(self):
        cli = FakeCLI(failures=["gcloud projects get-iam-policy"])
        self.assertIsNone(self.resources(cli).verify_iam())

    def test_instance_policies(self):
        cli = FakeCLI(responses={"gcloud compute instances describe": "name: instance-1\n"})
        self.resources(cli).recreate_instance()
        agents = cli.ran("gcloud compute instances ops-agents policies create")
        self.assertEqual(agents[0][6], "goog-ops-agent-v2-x86-template-1-4-0-us-east1-b")
        self.assertTrue(agents[0][8].startswith(f"--file={self.tmp_dir.name}"))
        schedule = cli.ran("gcloud compute resource-policies create snapshot-schedule")[0]
        self.assertIn("default-schedule-1", schedule)
        self.assertIn("--max-retention-days=14", schedule)
        self.assertIn("--start-time=08:00", schedule)
        self.assertEqual(
            cli.ran("gcloud compute disks add-resource-policies"),
            [
                [
                    "gcloud",
                    "compute",
                    "disks",
                    "add-resource-policies",
                    "instance-1",
                    "--zone=us-east1-b",
                    "--resource-policies=projects/my-project/regions/us-east1"
                    "/resourcePolicies/default-schedule-1",
                ]
            ],
        )
        # the policy file is removed after use
        self.assertEqual(os.listdir(self.tmp_dir.name), [])

    def test_instance_policies_are_optional(self):
        cli = FakeCLI(
            responses={"gcloud compute instances describe": "name: instance-1\n"},
            failures=[
                "gcloud compute instances ops-agents",
                "gcloud compute resource-policies",
            ],
        )
        self.assertEqual(self.resources(cli).recreate_instance(), "name: instance-1\n")
        self.assertFalse(cli.ran("gcloud compute disks add-resource-policies"))

    def test_audit_logs_already_enabled(self):
        policy = {"auditConfigs": [{"service": "compute.googleapis.com"}]}
        cli = FakeCLI(responses={"gcloud projects get-iam-policy": json.dumps(policy)})
        self.assertFalse(self.resources(cli).enable_audit_logs())
        self.assertFalse(cli.ran("gcloud projects set-iam-policy"))

    def test_ensure_bucket(self):
        cli = FakeCLI(failures=["gsutil ls"])
        self.resources(cli).ensure_bucket("gcf-gen2-storage-my-project")
        self.assertEqual(
            cli.ran("gsutil mb"),
            [
                [
                    "gsutil",
                    "mb",
                    "-p",
                    "my-project",
                    "-l",
                    "us-east1",
                    "gs://gcf-gen2-storage-my-project",
                ]
            ],
        )

        cli = FakeCLI()
        self.resources(cli).ensure_bucket("bucket")
        self.assertFalse(cli.ran("gsutil mb"))

    def test_function_url(self):
        cli = FakeCLI(responses={"gcloud functions describe": "https://fn.a.run.app\n"})
        self.assertEqual(self.resources(cli).function_url("fn"), "https://fn.a.run.app")

    def test_recreate_instance(self):
        cli = FakeCLI(responses={"gcloud compute instances describe": "name: instance-1\n"})
        out = self.resources(cli).recreate_instance()
        self.assertEqual(out, "name: instance-1\n")
        verbs = [cmd[3] for cmd in cli.ran("gcloud compute instances")]
        self.assertEqual(verbs, ["describe", "delete", "create", "ops-agents", "describe"])
        create = cli.ran("gcloud compute instances create")[0]
        self.assertIn("--zone=us-east1-b", create)
        self.assertIn("--service-account=123-compute@developer.gserviceaccount.com", create)

    def test_create_new_instance(self):
        cli = FakeCLI(failures=["gcloud compute instances describe instance-2 --zone us-east1-b"])
        with self.assertRaises(RuntimeError):
            # the final describe fails as well
            self.resources(cli).recreate_instance("instance-2")
        self.assertFalse(cli.ran("gcloud compute instances delete"))
        self.assertTrue(cli.ran("gcloud compute instances create instance-2"))


if __name__ == "__main__":
    unittest.main()
