"""Packaged defaults of the lab.

The LabConfig class reads `lab.json` shipped with the package: the APIs to
enable, the IAM roles to grant, function runtimes, the retry policy, and the
flags of the test VM. User configuration files override these values key by key.
"""

import copy
import json
from typing import Dict, List, Optional

from gcflab.utils import package_absolute_path


def merge_dicts(base: dict, override: dict) -> dict:
    """Recursively merge `override` into a copy of `base`."""
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = merge_dicts(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


class LabConfig:
    """Central access to the lab defaults.

    Attributes:
        _config (Dict): The loaded configuration, with user overrides applied.
    """

    def __init__(self, overrides: Optional[Dict] = None) -> None:
        """Load lab.json and apply user overrides.

        Args:
            overrides: Optional dictionary with the same structure as lab.json

        Raises:
            FileNotFoundError: If lab.json is missing from the package.
            json.JSONDecodeError: If lab.json contains invalid JSON.
        """
        with open(package_absolute_path("lab.json"), "r") as cfg:
            self._config = json.load(cfg)
        if overrides:
            self._config = merge_dicts(self._config, overrides)

    def docker_image(self) -> str:
        return self._config["general"]["docker_image"]

    def default_region(self) -> str:
        return self._config["general"]["default_region"]

    def workdir(self) -> str:
        return self._config["general"]["workdir"]

    def max_attempts(self) -> int:
        return int(self._config["retry"]["max_attempts"])

    def delay(self) -> float:
        return float(self._config["retry"]["delay"])

    def services(self) -> List[str]:
        return self._config["services"]

    def iam_roles(self, member: str) -> List[str]:
        """Get the roles granted to one of the lab's service accounts.

        Args:
            member: "compute", "cloudbuild" or "storage"
        """
        return self._config["iam"].get(member, [])

    def source_buckets(self) -> Dict:
        """Role granted on function source buckets and the extra regions to check."""
        return self._config["source_buckets"]

    def snapshot_schedule(self) -> Dict:
        return self._config["snapshot_schedule"]

    def audit_log_service(self) -> str:
        return self._config["audit_logs"]["service"]

    def audit_log_types(self) -> List[str]:
        return self._config["audit_logs"]["log_types"]

    def runtime(self, language: str) -> str:
        return self._config["runtimes"][language]

    def vm_labeler(self) -> Dict[str, str]:
        return self._config["vm_labeler"]

    def instance(self) -> Dict:
        return self._config["instance"]

    def serialize(self) -> Dict:
        return copy.deepcopy(self._config)
