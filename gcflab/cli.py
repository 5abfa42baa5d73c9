#!/usr/bin/env python3


import json
import logging
import functools
import os
import traceback
from typing import Optional, Sequence

import click
import docker

from gcflab.config import LabConfig
from gcflab.faas.deployer import DeploymentFailed, DeploymentRequest, RetryingDeployer
from gcflab.gcp.cli import DockerGCloudCLI, GCloudCLI
from gcflab.gcp.config import GCPConfig
from gcflab.gcp.deployer import GCloudFunctionDeployer
from gcflab.gcp.lab import LabWorkflow, continue_checkpoint
from gcflab.gcp.terraform import TerraformLab
from gcflab.utils import (
    LoggingHandlers,
    catch_interrupt,
    configure_logging,
    global_logging,
    serialize,
    update_nested_dict,
)

cli_client: Optional[GCloudCLI] = None


class ExceptionProcesser(click.Group):
    def __call__(self, *args, **kwargs):
        try:
            return self.main(*args, **kwargs)
        except Exception as e:
            logging.error(e)
            traceback.print_exc()
            logging.info("# Lab failed! See out.log for details")
            raise SystemExit(1)
        finally:
            if cli_client is not None:
                cli_client.shutdown()


def common_params(func):
    @click.option(
        "--config",
        default=None,
        type=click.Path(readable=True, dir_okay=False),
        help="Location of the JSON configuration.",
    )
    @click.option("--output-dir", default=os.path.curdir, help="Output directory for results.")
    @click.option("--output-file", default="out.log", help="Output filename for logging.")
    @click.option("--verbose/--no-verbose", default=False, help="Verbose output.")
    @click.option(
        "--docker/--no-docker",
        "use_docker",
        default=False,
        help="Run the Cloud SDK in a Docker container instead of the local installation.",
    )
    @click.option(
        "--credentials",
        default=None,
        type=click.Path(exists=True, dir_okay=False),
        help="Service account JSON file, required with --docker.",
    )
    @click.option("--project", default=None, type=str, help="GCP project ID.")
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def retry_params(func):
    @click.option(
        "--max-attempts",
        default=None,
        type=click.IntRange(min=1),
        help="Maximum number of deployment attempts.",
    )
    @click.option(
        "--delay",
        default=None,
        type=click.FloatRange(min=0),
        help="Seconds between deployment attempts.",
    )
    @click.option(
        "--attempt-timeout",
        default=None,
        type=click.FloatRange(min=0, min_open=True),
        help="Kill a deployment attempt after this many seconds.",
    )
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def parse_common_params(
    config,
    output_dir,
    output_file,
    verbose,
    use_docker,
    credentials,
    project,
    workdir: Optional[str] = None,
    mounts: Sequence[str] = (),
):
    """Load the configuration and create the Cloud SDK runner.

    CLI options override values from the JSON configuration. In Docker mode the
    lab work directory and `mounts` are shared with the Cloud SDK container.
    """
    global cli_client

    config_obj = {}
    if config is not None:
        with open(config, "r") as f:
            config_obj = json.load(f)
    os.makedirs(output_dir, exist_ok=True)
    logging_filename = os.path.abspath(os.path.join(output_dir, output_file))
    handlers = LoggingHandlers(verbose=verbose, filename=logging_filename)
    configure_logging()

    update_nested_dict(config_obj, ["deployment", "project_id"], project)
    update_nested_dict(config_obj, ["deployment", "credentials"], credentials)
    update_nested_dict(config_obj, ["lab", "general", "workdir"], workdir)
    lab_config = LabConfig(config_obj.get("lab"))

    if use_docker:
        credentials = config_obj.get("deployment", {}).get("credentials")
        if credentials is None:
            raise click.UsageError("Running the Cloud SDK in Docker requires --credentials.")
        workdirs = []
        for path in [lab_config.workdir(), *mounts]:
            path = os.path.abspath(os.path.expanduser(path))
            os.makedirs(path, exist_ok=True)
            if path not in workdirs:
                workdirs.append(path)
        docker_cli = DockerGCloudCLI(
            credentials, lab_config.docker_image(), docker.from_env(), workdirs
        )
        cli_client = docker_cli
        docker_cli.logging_handlers = handlers
        docker_cli.login(config_obj.get("deployment", {}).get("project_id"))
    else:
        cli_client = GCloudCLI()
        cli_client.logging_handlers = handlers

    catch_interrupt()

    return config_obj, lab_config, handlers, cli_client


def create_deployer(
    lab_config: LabConfig,
    cli: GCloudCLI,
    handlers: LoggingHandlers,
    max_attempts: Optional[int],
    delay: Optional[float],
    attempt_timeout: Optional[float],
    source_dir: Optional[str] = None,
) -> RetryingDeployer:
    function_deployer = GCloudFunctionDeployer(cli, timeout=attempt_timeout, source_dir=source_dir)
    function_deployer.logging_handlers = handlers
    deployer = RetryingDeployer(
        function_deployer,
        max_attempts=max_attempts if max_attempts is not None else lab_config.max_attempts(),
        delay=delay if delay is not None else lab_config.delay(),
    )
    deployer.logging_handlers = handlers
    return deployer


def prompt_checkpoint(message: str) -> bool:
    click.echo(message)
    return click.confirm("Have you completed this step?", default=False)


@click.group(cls=ExceptionProcesser)
def cli():
    global_logging()


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("name", type=str)
@click.argument("parameters", nargs=-1, type=click.UNPROCESSED)
@click.option(
    "--source-dir",
    default=None,
    type=click.Path(exists=True, file_okay=False),
    help="Working directory of the deploy command, shared with the container with --docker.",
)
@retry_params
@common_params
def deploy(name, parameters, source_dir, max_attempts, delay, attempt_timeout, **kwargs):
    """Deploy function NAME, forwarding PARAMETERS to gcloud functions deploy.

    Put PARAMETERS after `--` when they clash with options of this command.
    """
    if source_dir is not None:
        source_dir = os.path.abspath(source_dir)
    config, lab_config, handlers, gcloud = parse_common_params(
        mounts=[source_dir] if source_dir else [], **kwargs
    )
    deployer = create_deployer(
        lab_config, gcloud, handlers, max_attempts, delay, attempt_timeout, source_dir
    )
    try:
        result = deployer.deploy_or_raise(DeploymentRequest(name, tuple(parameters)))
    except DeploymentFailed as e:
        raise click.ClickException(str(e))
    click.echo(serialize(result))


@cli.group()
def lab():
    pass


@lab.command("run")
@click.option("--region", default=None, type=str, help="Region of functions and buckets.")
@click.option("--zone", default=None, type=str, help="Zone of the test VM.")
@click.option(
    "--workdir", default=None, type=str, help="Directory where function sources are written."
)
@click.option(
    "--interactive/--no-interactive",
    default=True,
    help="Ask for confirmation at manual checkpoints.",
)
@click.option(
    "--skip",
    multiple=True,
    type=click.Choice(LabWorkflow.step_names()),
    help="Lab step to skip; can be repeated.",
)
@retry_params
@common_params
def lab_run(
    region, zone, workdir, interactive, skip, max_attempts, delay, attempt_timeout, **kwargs
):
    """Run the Cloud Functions lab."""
    config, lab_config, handlers, gcloud = parse_common_params(workdir=workdir, **kwargs)
    update_nested_dict(config, ["deployment", "region"], region)
    update_nested_dict(config, ["deployment", "zone"], zone)

    gcp_config = GCPConfig.resolve(gcloud, config.get("deployment"), lab_config.default_region())
    gcp_config.logging_handlers = handlers
    gcp_config.apply(gcloud)

    deployer = create_deployer(lab_config, gcloud, handlers, max_attempts, delay, attempt_timeout)
    workflow = LabWorkflow(
        gcp_config,
        lab_config,
        gcloud,
        deployer,
        checkpoint=prompt_checkpoint if interactive else continue_checkpoint,
    )
    workflow.logging_handlers = handlers
    workflow.resources.logging_handlers = handlers

    report = workflow.run(skip=skip)

    report_file = os.path.join(kwargs["output_dir"], "lab-report.json")
    with open(report_file, "w") as out_f:
        out_f.write(serialize(report))
    workflow.logging.info("Save results to {}".format(os.path.abspath(report_file)))


@lab.command("config")
@click.option("--region", default=None, type=str, help="Region of functions and buckets.")
@click.option("--zone", default=None, type=str, help="Zone of the test VM.")
@common_params
def lab_config_cmd(region, zone, **kwargs):
    """Resolve and print the project configuration."""
    config, lab_config, handlers, gcloud = parse_common_params(**kwargs)
    update_nested_dict(config, ["deployment", "region"], region)
    update_nested_dict(config, ["deployment", "zone"], zone)
    gcp_config = GCPConfig.resolve(gcloud, config.get("deployment"), lab_config.default_region())
    click.echo(serialize(gcp_config))


@cli.group()
def terraform():
    pass


@terraform.command("run")
@click.option("--region", prompt="Region (e.g., us-west1)", type=str, help="Region of the lab.")
@click.option(
    "--workdir",
    default="sql-with-terraform",
    type=str,
    help="Directory of the Terraform files, shared with the container with --docker.",
)
@common_params
def terraform_run(region, workdir, **kwargs):
    """Run the Cloud SQL with Terraform lab."""
    config, lab_config, handlers, gcloud = parse_common_params(mounts=[workdir], **kwargs)
    project = config.get("deployment", {}).get("project_id") or gcloud.value(
        ["gcloud", "config", "get-value", "project"]
    )
    if not project:
        raise click.UsageError("No GCP project is configured; pass --project.")
    runner = TerraformLab(gcloud, project, region, workdir)
    runner.logging_handlers = handlers
    runner.logging.info(f"Detected project: {project}")
    runner.run()


def main():
    cli()


if __name__ == "__main__":
    main()
