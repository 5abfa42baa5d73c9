"""The Cloud Functions (2nd gen) lab.

LabWorkflow runs the lab steps in order: it prepares the project, deploys the
lab's functions through a RetryingDeployer, creates the test VM that the VM
labeler reacts to, and calls the HTTP functions. Every step is a public method
and can be run on its own.

Manual checkpoints of the lab are not read from a terminal here. The workflow
calls a checkpoint hook with a message instead; when the hook returns False the
workflow stops before the next step and reports where it stopped.

An exhausted deployment raises DeploymentFailed out of the workflow and aborts
the lab. Failing HTTP calls, log queries and optional dependency installs are
only reported as warnings.

Example:
    Running the whole lab without manual pauses:

        workflow = LabWorkflow(config, LabConfig(), cli, RetryingDeployer(deployer))
        report = workflow.run()
"""

import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from gcflab.config import LabConfig
from gcflab.faas.deployer import DeploymentResult, RetryingDeployer
from gcflab.gcp.cli import GCloudCLI
from gcflab.gcp.config import GCPConfig
from gcflab.gcp.function import (
    FunctionSpec,
    colored_function,
    http_function,
    slow_function,
    storage_function,
    vm_labeler_function,
)
from gcflab.gcp.resources import GCPProjectResources
from gcflab.gcp.triggers import HTTPTrigger
from gcflab.utils import LoggingBase, execute

Checkpoint = Callable[[str], bool]
"""Hook called at a manual checkpoint; returns False to stop the lab."""


def continue_checkpoint(message: str) -> bool:
    return True


@dataclass
class LabReport:
    """
    Outcome of a lab run.

    Attributes:
        results: Final outcome of every deployment, in order
        urls: Invocation URLs of the HTTP functions
        steps: Names of the completed steps
        completed: True if every step ran
        stopped_at: Step before which a checkpoint stopped the lab
        instance: Description of the created VM
    """

    results: List[DeploymentResult] = field(default_factory=list)
    urls: Dict[str, str] = field(default_factory=dict)
    steps: List[str] = field(default_factory=list)
    completed: bool = False
    stopped_at: Optional[str] = None
    instance: Optional[str] = None

    def serialize(self) -> dict:
        return {
            "results": [result.serialize() for result in self.results],
            "urls": self.urls,
            "steps": self.steps,
            "completed": self.completed,
            "stopped_at": self.stopped_at,
            "instance": self.instance,
        }


class LabWorkflow(LoggingBase):

    STEPS: List[Tuple[str, Optional[str]]] = [
        ("enable_services", None),
        ("configure_iam", None),
        ("enable_compute_audit_logs", None),
        ("deploy_http_function", None),
        ("deploy_storage_function", None),
        ("deploy_vm_labeler", None),
        ("create_instance", None),
        ("deploy_colored_function", None),
        ("deploy_slow_function", None),
        (
            "deploy_concurrent_function",
            "Please complete the manual step and verify your progress up to Task 6.",
        ),
    ]
    """Step names, each with an optional checkpoint message shown before it."""

    @staticmethod
    def typename() -> str:
        return "GCP.Lab"

    def __init__(
        self,
        config: GCPConfig,
        lab_config: LabConfig,
        cli: GCloudCLI,
        deployer: RetryingDeployer,
        checkpoint: Checkpoint = continue_checkpoint,
        workdir: Optional[str] = None,
        trigger_type: Callable[[str], HTTPTrigger] = HTTPTrigger,
    ):
        """
        Args:
            config: Resolved project settings
            lab_config: Lab defaults
            cli: Cloud SDK command runner
            deployer: Retrying function deployer
            checkpoint: Hook consulted at manual checkpoints
            workdir: Directory holding function sources; defaults to lab.json
            trigger_type: Factory of HTTP triggers for function URLs
        """
        super().__init__()
        self.config = config
        self.lab_config = lab_config
        self.cli = cli
        self.deployer = deployer
        self.checkpoint = checkpoint
        self.workdir = os.path.abspath(os.path.expanduser(workdir or lab_config.workdir()))
        self.resources = GCPProjectResources(config, lab_config, cli, self.workdir)
        self._trigger_type = trigger_type
        self.report = LabReport()

    @staticmethod
    def step_names() -> List[str]:
        return [name for name, _ in LabWorkflow.STEPS]

    def run(self, skip: Sequence[str] = ()) -> LabReport:
        """Run all lab steps in order.

        Args:
            skip: Names of steps that are not executed

        Returns:
            Report of the run

        Raises:
            DeploymentFailed: If a function could not be deployed
            RuntimeError: If a required command failed
        """
        unknown = set(skip) - set(LabWorkflow.step_names())
        if unknown:
            raise ValueError(f"Unknown lab steps: {', '.join(sorted(unknown))}")

        self.report = LabReport()
        for name, message in LabWorkflow.STEPS:
            if name in skip:
                self.logging.info(f"Skipping step {name}.")
                continue
            if message is not None and not self.checkpoint(message):
                self.logging.warning(f"Lab stopped at checkpoint before {name}.")
                self.report.stopped_at = name
                return self.report
            getattr(self, name)()
            self.report.steps.append(name)

        self.report.completed = True
        self.logging.info("Lab completed successfully!")
        return self.report

    def source_dir(self, name: str) -> str:
        return os.path.join(self.workdir, name)

    def enable_services(self) -> None:
        self.resources.enable_services()

    def configure_iam(self) -> None:
        self.resources.configure_iam()

    def enable_compute_audit_logs(self) -> None:
        self.resources.enable_audit_logs()

    def _install_dependencies(self, directory: str, required: bool = True) -> None:
        try:
            execute(["npm", "install", "--no-audit", "--no-fund"], cwd=directory)
        except RuntimeError as e:
            if required:
                raise
            self.logging.warning(str(e))

    def _prepare(self, spec: FunctionSpec, directory: str) -> None:
        spec.write_sources(directory)
        if spec.install_dependencies:
            self._install_dependencies(directory)

    def _deploy(self, spec: FunctionSpec, directory: str) -> DeploymentResult:
        self.logging.info(f"Deploying function {spec.name}...")
        result = self.deployer.deploy(spec.request(self.config.region, directory))
        self.report.results.append(result)
        return result.raise_for_status()

    def _call(self, name: str) -> Optional[str]:
        url = self.resources.function_url(name)
        if not url:
            self.logging.warning(f"Could not find the URL of function {name}.")
            return None
        self.report.urls[name] = url
        self.logging.info(f"Calling: {url}")
        try:
            _, body = self._trigger_type(url).invoke()
        except RuntimeError as e:
            self.logging.warning(str(e))
            return None
        self.logging.info(f"Response: {body.strip()}")
        return body

    def deploy_http_function(self) -> DeploymentResult:
        spec = http_function(self.lab_config.runtime("nodejs"))
        directory = self.source_dir("hello-http")
        self._prepare(spec, directory)
        result = self._deploy(spec, directory)
        self._call(spec.name)
        return result

    def deploy_storage_function(self) -> DeploymentResult:
        bucket = self.resources.default_bucket()
        self.resources.ensure_bucket(bucket)

        spec = storage_function(self.lab_config.runtime("nodejs"), bucket)
        directory = self.source_dir("hello-storage")
        self._prepare(spec, directory)
        result = self._deploy(spec, directory)

        # uploading an object fires the storage event
        event_file = os.path.join(directory, "random.txt")
        with open(event_file, "w") as f:
            f.write("Hello World\n")
        self.resources.upload(bucket, event_file, "random.txt")

        self.logging.info(f"Reading recent logs of {spec.name}...")
        logs = self.resources.function_logs(spec.name)
        if logs:
            self.logging.info(logs.rstrip())
        return result

    def deploy_vm_labeler(self) -> DeploymentResult:
        labeler = self.lab_config.vm_labeler()
        repository_dir = self.source_dir("eventarc-samples")
        if not os.path.isdir(repository_dir):
            execute(["git", "clone", labeler["repository"], repository_dir])
        directory = os.path.join(repository_dir, labeler["path"])
        self._install_dependencies(directory, required=False)

        spec = vm_labeler_function(self.lab_config.runtime("nodejs"), labeler["method"])
        return self._deploy(spec, directory)

    def create_instance(self) -> str:
        self.report.instance = self.resources.recreate_instance()
        return self.report.instance

    def deploy_colored_function(self) -> DeploymentResult:
        spec = colored_function(self.lab_config.runtime("python"))
        directory = self.source_dir("hello-world-colored")
        self._prepare(spec, directory)
        result = self._deploy(spec, directory)
        self._call(spec.name)
        return result

    def deploy_slow_function(self) -> DeploymentResult:
        spec = slow_function(self.lab_config.runtime("go"))
        directory = self.source_dir("min-instances")
        self._prepare(spec, directory)
        result = self._deploy(spec, directory)
        self._call(spec.name)
        return result

    def deploy_concurrent_function(self) -> DeploymentResult:
        # removes the Cloud Run service backing the first slow function
        self.resources.delete_run_service("slow-function")
        spec = slow_function(
            self.lab_config.runtime("go"), name="slow-concurrent-function", min_instances=1
        )
        directory = self.source_dir("min-instances")
        self._prepare(spec, directory)
        result = self._deploy(spec, directory)
        self._call(spec.name)
        return result
