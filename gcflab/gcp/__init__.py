"""Google Cloud Platform support of gcflab.

The package includes:
- Cloud SDK command execution, locally or in a Docker container
- Function deployment with `gcloud functions deploy`
- Project configuration: project id and number, region and zone
- Project resources: APIs, IAM bindings, audit logs, buckets and the test VM
- The Cloud Functions lab workflow and the Terraform lab

Modules:
    cli: gcloud CLI integration
    config: Project configuration
    deployer: Cloud Functions deployer
    function: Function definitions of the lab
    resources: Project resources
    triggers: HTTP invocation of functions
    lab: Cloud Functions lab workflow
    terraform: Terraform lab

Example:
    Deploying a single function with retries:

        from gcflab.faas import DeploymentRequest, RetryingDeployer
        from gcflab.gcp import GCloudCLI, GCloudFunctionDeployer

        deployer = RetryingDeployer(GCloudFunctionDeployer(GCloudCLI()))
        deployer.deploy_or_raise(DeploymentRequest("my-function", ("--gen2",)))
"""

from .cli import GCloudCLI, DockerGCloudCLI  # noqa
from .config import GCPConfig  # noqa
from .deployer import GCloudFunctionDeployer  # noqa
from .lab import LabWorkflow, LabReport  # noqa
