import os
import tempfile
import unittest

from gcflab.gcp.function import (
    colored_function,
    http_function,
    slow_function,
    storage_function,
    vm_labeler_function,
)


class TestFunctionSpec(unittest.TestCase):
    def test_http_function(self):
        spec = http_function("nodejs22")
        self.assertEqual(
            spec.parameters("us-east1"),
            [
                "--gen2",
                "--runtime",
                "nodejs22",
                "--entry-point",
                "helloWorld",
                "--source",
                ".",
                "--region",
                "us-east1",
                "--trigger-http",
                "--timeout",
                "600s",
                "--allow-unauthenticated",
                "--max-instances",
                "1",
            ],
        )

    def test_storage_function(self):
        params = storage_function("nodejs22", "gcf-gen2-storage-p").parameters("us-east1", "/src")
        self.assertEqual(params[params.index("--trigger-bucket") + 1], "gcf-gen2-storage-p")
        self.assertEqual(params[params.index("--trigger-location") + 1], "us-east1")
        self.assertEqual(params[params.index("--source") + 1], "/src")
        self.assertNotIn("--trigger-http", params)

    def test_vm_labeler_filters(self):
        params = vm_labeler_function("nodejs22", "v1.compute.instances.insert").parameters(
            "us-east1"
        )
        filters = [p for p in params if p.startswith("--trigger-event-filters=")]
        self.assertEqual(
            filters,
            [
                "--trigger-event-filters=type=google.cloud.audit.log.v1.written",
                "--trigger-event-filters=serviceName=compute.googleapis.com",
                "--trigger-event-filters=methodName=v1.compute.instances.insert",
            ],
        )
        self.assertIn("--trigger-location", params)

    def test_colored_function_environment(self):
        params = colored_function("python311", color="orange").parameters("us-east1")
        self.assertEqual(params[params.index("--update-env-vars") + 1], "COLOR=orange")

    def test_slow_function_instances(self):
        params = slow_function("go123").parameters("us-east1")
        self.assertNotIn("--min-instances", params)
        self.assertEqual(params[-2:], ["--max-instances", "4"])

        spec = slow_function("go123", name="slow-concurrent-function", min_instances=1)
        request = spec.request("us-east1", "/src")
        self.assertEqual(request.name, "slow-concurrent-function")
        params = list(request.parameters)
        self.assertEqual(params[params.index("--min-instances") + 1], "1")

    def test_write_sources(self):
        spec = colored_function("python311")
        with tempfile.TemporaryDirectory() as tmp_dir:
            target = os.path.join(tmp_dir, "hello-world-colored")
            spec.write_sources(target)
            self.assertEqual(sorted(os.listdir(target)), ["main.py", "requirements.txt"])
            with open(os.path.join(target, "main.py")) as f:
                self.assertIn("def hello_world(request)", f.read())

    def test_vm_labeler_has_no_sources(self):
        spec = vm_labeler_function("nodejs22", "v1.compute.instances.insert")
        self.assertEqual(spec.sources, {})
        self.assertTrue(spec.install_dependencies)


if __name__ == "__main__":
    unittest.main()
