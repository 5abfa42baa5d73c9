"""Google Cloud SDK command execution.

This module runs Cloud SDK tools (gcloud, gsutil) for the rest of gcflab. Commands
are always passed as argument lists, never through a shell. Two implementations
share one interface:

Classes:
    GCloudCLI: Runs the Cloud SDK installed on the local machine
    DockerGCloudCLI: Runs the Cloud SDK inside a Docker container, authenticated
        with a mounted service account file

Example:
    Querying the active project:

        cli = GCloudCLI()
        project = cli.execute(["gcloud", "config", "get-value", "project"]).strip()
"""

import logging
import os
from typing import Optional, Sequence

import docker

from gcflab.utils import LoggingBase, execute


class GCloudCLI(LoggingBase):
    """Cloud SDK installed on the local machine.

    Attributes:
        env: Optional environment passed to every command
    """

    @staticmethod
    def typename() -> str:
        return "GCP.CLI"

    def __init__(self, env: Optional[dict] = None) -> None:
        super().__init__()
        self.env = env

    def execute(
        self,
        cmd: Sequence[str],
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
        merge_stderr: bool = True,
    ) -> str:
        """Run a command and return its output.

        Args:
            cmd: Command and arguments, e.g., ["gcloud", "functions", "list"]
            cwd: Optional working directory
            timeout: Optional number of seconds after which the command is killed
            merge_stderr: Return stderr together with stdout

        Returns:
            Output of the command

        Raises:
            RuntimeError: If the command fails or times out
        """
        self.logging.debug(f"Running: {' '.join(cmd)}")
        out = execute(cmd, cwd=cwd, env=self.env, timeout=timeout, merge_stderr=merge_stderr)
        self.logging.debug(out.rstrip())
        return out

    def try_execute(
        self, cmd: Sequence[str], cwd: Optional[str] = None, merge_stderr: bool = True
    ) -> Optional[str]:
        """Run a command whose failure is tolerated.

        Returns:
            Output of the command, or None if it failed
        """
        try:
            return self.execute(cmd, cwd=cwd, merge_stderr=merge_stderr)
        except RuntimeError as e:
            self.logging.warning(str(e))
            return None

    def value(self, cmd: Sequence[str]) -> str:
        """Run a query command and return the first line of its stdout.

        Failed queries and unset gcloud properties return an empty string.
        """
        out = self.try_execute(cmd, merge_stderr=False)
        if not out:
            return ""
        lines = [line.strip() for line in out.strip().splitlines()]
        if not lines or lines[0] == "(unset)":
            return ""
        return lines[0]

    def shutdown(self) -> None:
        pass


class DockerGCloudCLI(GCloudCLI):
    """Cloud SDK running in a Docker container.

    The container mounts the service account credentials and the working
    directories of the lab (under the same paths), so that `--source .`
    deployments see the files written locally. Per-command timeouts are not
    supported by Docker exec and are ignored.

    Attributes:
        docker_instance: Running Docker container with the Cloud SDK
    """

    @staticmethod
    def typename() -> str:
        return "GCP.DockerCLI"

    def __init__(
        self,
        credentials: str,
        image: str,
        docker_client: docker.client,
        workdirs: Sequence[str] = (),
    ) -> None:
        """Start the Cloud SDK container.

        Pulls the image if needed and mounts the credentials file.

        Args:
            credentials: Path to the service account JSON file
            image: Cloud SDK image, e.g., "google/cloud-sdk:slim"
            docker_client: Docker client for container management
            workdirs: Directories shared with the container under the same path

        Raises:
            RuntimeError: If Docker image pull fails
        """
        super().__init__()

        repository, _, tag = image.partition(":")
        tag = tag or "latest"
        try:
            docker_client.images.get(f"{repository}:{tag}")
        except docker.errors.ImageNotFound:
            try:
                logging.info(f"Docker pull of image {repository}:{tag}")
                docker_client.images.pull(repository, tag)
            except docker.errors.APIError:
                raise RuntimeError(f"Docker pull of image {image} failed!")

        volumes = {
            os.path.abspath(credentials): {
                "bind": "/credentials.json",
                "mode": "ro",
            }
        }
        for workdir in workdirs:
            workdir = os.path.abspath(workdir)
            volumes[workdir] = {"bind": workdir, "mode": "rw"}
        self.docker_instance = docker_client.containers.run(
            image=f"{repository}:{tag}",
            command="/bin/bash",
            volumes=volumes,
            remove=True,
            stdout=True,
            stderr=True,
            detach=True,
            tty=True,
        )
        self.logging.info(f"Started gcloud CLI container: {self.docker_instance.id}.")

    def execute(
        self,
        cmd: Sequence[str],
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
        merge_stderr: bool = True,
    ) -> str:
        printable = " ".join(cmd)
        self.logging.debug(f"Running in container: {printable}")
        if merge_stderr:
            exit_code, out = self.docker_instance.exec_run(list(cmd), workdir=cwd)
            output = out.decode("utf-8", errors="replace")
        else:
            exit_code, (out, err) = self.docker_instance.exec_run(
                list(cmd), workdir=cwd, demux=True
            )
            output = (out or b"").decode("utf-8", errors="replace")
            if exit_code != 0:
                output += (err or b"").decode("utf-8", errors="replace")
        if exit_code != 0:
            raise RuntimeError(
                f"Command {printable} failed at gcloud CLI docker!\n Output {output}"
            )
        self.logging.debug(output.rstrip())
        return output

    def login(self, project_name: Optional[str] = None) -> None:
        """Authenticate with the mounted service account and select the project."""
        self.execute(["gcloud", "auth", "login", "--cred-file=/credentials.json"])
        if project_name:
            self.execute(["gcloud", "config", "set", "project", project_name, "--quiet"])
        self.logging.info("gcloud CLI login successful")

    def shutdown(self) -> None:
        self.logging.info("Stopping gcloud CLI manage Docker instance")
        self.docker_instance.stop()
