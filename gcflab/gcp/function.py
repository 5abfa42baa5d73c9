"""Cloud Functions (2nd gen) deployed by the lab.

A FunctionSpec describes one function: its runtime, entry point, trigger and
scaling flags, and the source files written before deployment. The spec only
builds the parameter list forwarded to `gcloud functions deploy`; it never
interprets the flags.

Example:
    Parameters of the lab's HTTP function:

        spec = http_function("nodejs22")
        spec.parameters(region="us-east1", source="/home/me/hello-http")
"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from gcflab.faas.deployer import DeploymentRequest

FUNCTIONS_FRAMEWORK = {"@google-cloud/functions-framework": "^3.4.0"}


def _package_json(name: str) -> str:
    return (
        json.dumps(
            {
                "name": name,
                "version": "1.0.0",
                "main": "index.js",
                "dependencies": FUNCTIONS_FRAMEWORK,
            },
            indent=2,
        )
        + "\n"
    )


HTTP_FUNCTION_SOURCE = """const functions = require('@google-cloud/functions-framework');
functions.http('helloWorld', (req, res) => {
  res.status(200).send('HTTP with Node.js in GCF 2nd gen!');
});
"""

STORAGE_FUNCTION_SOURCE = """const functions = require('@google-cloud/functions-framework');
functions.cloudEvent('helloStorage', (cloudevent) => {
  console.log('Cloud Storage event with Node.js in GCF 2nd gen!');
  console.log(JSON.stringify(cloudevent));
});
"""

COLORED_FUNCTION_SOURCE = """import os


def hello_world(request):
    color = os.environ.get('COLOR', 'yellow')
    return f'<body style="background-color:{color}"><h1>Hello World!</h1></body>'
"""

SLOW_FUNCTION_SOURCE = """package p

import (
  "fmt"
  "net/http"
  "time"
)

func init() { time.Sleep(10 * time.Second) }

func HelloWorld(w http.ResponseWriter, r *http.Request) {
  fmt.Fprint(w, "Slow HTTP Go in GCF 2nd gen!")
}
"""


@dataclass
class FunctionSpec:
    """
    Deployment settings of a single 2nd gen Cloud Function.

    Attributes:
        name: Function name, reused on every deployment attempt
        runtime: Runtime identifier, e.g., nodejs22
        entry_point: Exported function invoked by the runtime
        trigger_http: Deploy with an HTTPS trigger
        allow_unauthenticated: Allow invocations without credentials
        trigger_bucket: Bucket whose object events trigger the function
        event_filters: Eventarc filters, one `--trigger-event-filters` flag each
        timeout: Optional request timeout, e.g., "600s"
        min_instances: Optional minimum number of warm instances
        max_instances: Optional upper bound of instances
        env_vars: Environment variables set on the function
        sources: Files written to the source directory before deployment
        install_dependencies: Run `npm install` in the source directory
    """

    name: str
    runtime: str
    entry_point: str
    trigger_http: bool = False
    allow_unauthenticated: bool = False
    trigger_bucket: Optional[str] = None
    event_filters: List[str] = field(default_factory=list)
    timeout: Optional[str] = None
    min_instances: Optional[int] = None
    max_instances: Optional[int] = None
    env_vars: Dict[str, str] = field(default_factory=dict)
    sources: Dict[str, str] = field(default_factory=dict)
    install_dependencies: bool = False

    @property
    def event_triggered(self) -> bool:
        return self.trigger_bucket is not None or len(self.event_filters) > 0

    def parameters(self, region: str, source: str = ".") -> List[str]:
        params = [
            "--gen2",
            "--runtime",
            self.runtime,
            "--entry-point",
            self.entry_point,
            "--source",
            source,
            "--region",
            region,
        ]
        if self.trigger_http:
            params.append("--trigger-http")
        if self.trigger_bucket is not None:
            params.extend(["--trigger-bucket", self.trigger_bucket])
        for event_filter in self.event_filters:
            params.append(f"--trigger-event-filters={event_filter}")
        if self.event_triggered:
            params.extend(["--trigger-location", region])
        if self.timeout is not None:
            params.extend(["--timeout", self.timeout])
        if self.allow_unauthenticated:
            params.append("--allow-unauthenticated")
        if self.env_vars:
            env = ",".join(f"{key}={value}" for key, value in self.env_vars.items())
            params.extend(["--update-env-vars", env])
        if self.min_instances is not None:
            params.extend(["--min-instances", str(self.min_instances)])
        if self.max_instances is not None:
            params.extend(["--max-instances", str(self.max_instances)])
        return params

    def request(self, region: str, source: str = ".") -> DeploymentRequest:
        return DeploymentRequest(self.name, tuple(self.parameters(region, source)))

    def write_sources(self, directory: str) -> None:
        """Write the function's source files, overwriting previous versions."""
        os.makedirs(directory, exist_ok=True)
        for filename, content in self.sources.items():
            with open(os.path.join(directory, filename), "w") as f:
                f.write(content)


def http_function(runtime: str) -> FunctionSpec:
    return FunctionSpec(
        name="nodejs-http-function",
        runtime=runtime,
        entry_point="helloWorld",
        trigger_http=True,
        allow_unauthenticated=True,
        timeout="600s",
        max_instances=1,
        sources={
            "index.js": HTTP_FUNCTION_SOURCE,
            "package.json": _package_json("nodejs-http-function"),
        },
        install_dependencies=True,
    )


def storage_function(runtime: str, bucket: str) -> FunctionSpec:
    return FunctionSpec(
        name="nodejs-storage-function",
        runtime=runtime,
        entry_point="helloStorage",
        trigger_bucket=bucket,
        max_instances=1,
        sources={
            "index.js": STORAGE_FUNCTION_SOURCE,
            "package.json": _package_json("nodejs-storage-function"),
        },
        install_dependencies=True,
    )


def vm_labeler_function(runtime: str, method: str) -> FunctionSpec:
    """The labeler reacts to audit log entries of VM creation.

    Its sources come from the eventarc-samples repository, so none are written.
    """
    return FunctionSpec(
        name="gce-vm-labeler",
        runtime=runtime,
        entry_point="labelVmCreation",
        event_filters=[
            "type=google.cloud.audit.log.v1.written",
            "serviceName=compute.googleapis.com",
            f"methodName={method}",
        ],
        max_instances=1,
        install_dependencies=True,
    )


def colored_function(runtime: str, color: str = "yellow") -> FunctionSpec:
    return FunctionSpec(
        name="hello-world-colored",
        runtime=runtime,
        entry_point="hello_world",
        trigger_http=True,
        allow_unauthenticated=True,
        env_vars={"COLOR": color},
        max_instances=1,
        sources={"main.py": COLORED_FUNCTION_SOURCE, "requirements.txt": "\n"},
    )


def slow_function(runtime: str, name: str = "slow-function", min_instances=None) -> FunctionSpec:
    return FunctionSpec(
        name=name,
        runtime=runtime,
        entry_point="HelloWorld",
        trigger_http=True,
        allow_unauthenticated=True,
        min_instances=min_instances,
        max_instances=4,
        sources={"main.go": SLOW_FUNCTION_SOURCE, "go.mod": "module example.com/mod\n"},
    )
