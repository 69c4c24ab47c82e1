# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Structural and semantic checks on a parsed Compose document.

Every check runs regardless of earlier failures so that all defects are
reported in one pass. A given defect produces either an error or a
warning, never both.
"""
import re
from typing import Any, Dict, List, Optional

from ..MODELS.compose_file import normalize_names, reference_name
from ..MODELS.conversion import ValidationResult
from ..UTILS.units import is_valid_cpu_spec, is_valid_memory_spec

PORT_PATTERN = re.compile(r"^\d+(?::\d+)?(?:/(?:tcp|udp))?$")
VERSION_PATTERN = re.compile(r"^3(?:\.\d+)?$")
RESTART_PATTERN = re.compile(r"^(no|always|unless-stopped|on-failure(?::\d+)?)$")

TOP_LEVEL_SECTIONS = ("services", "networks", "volumes", "configs", "secrets")
NETWORK_DRIVERS = ("bridge", "host", "none", "overlay")


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _sequence(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def validate_compose_file(document: Any) -> ValidationResult:
    """
    Validates a Compose document tree before translation.

    :param document: The parsed document (a mapping).
    :return: The collected errors and warnings.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(document, dict):
        return ValidationResult(errors=("Compose document must be a mapping",))

    for section in TOP_LEVEL_SECTIONS:
        value = document.get(section)
        if value is not None and not isinstance(value, dict):
            errors.append(f"'{section}' must be a mapping")

    version = validate_compose_version(document.get("version"))
    errors.extend(version.errors)
    warnings.extend(version.warnings)

    _validate_services(document, errors, warnings)
    _validate_networks(document, warnings)
    _validate_volumes(document, warnings)
    _validate_configs(document, errors, warnings)
    _validate_secrets(document, errors, warnings)

    return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))


def validate_compose_version(version: Optional[Any]) -> ValidationResult:
    """
    Checks that the Compose file format version is one we can translate.

    A missing version is assumed to be the latest format.

    :param version: The ``version`` field, if any.
    :return: The version diagnostics.
    """
    if version is None or version == "":
        return ValidationResult(warnings=("No version specified - assuming latest",))

    version = str(version)
    if version.startswith(("1.", "2.")):
        return ValidationResult(errors=(f"Compose version '{version}' is deprecated and not supported",))
    if not VERSION_PATTERN.match(version):
        return ValidationResult(
            errors=(f"Compose version '{version}' is not supported. Supported versions: 3.0 - 3.9",)
        )
    return ValidationResult()


def _validate_services(document: Dict[str, Any], errors: List[str], warnings: List[str]):
    """
    Validates the services section and every reference it makes.
    """
    services = document.get("services")
    if not services:
        errors.append("No services defined")
        return
    if not isinstance(services, dict):
        return

    seen: Dict[str, str] = {}
    for service_name in services:
        folded = str(service_name).lower()
        if folded in seen:
            errors.append(
                f"Service '{service_name}' collides with service '{seen[folded]}' "
                f"(names must be unique ignoring case)"
            )
        else:
            seen[folded] = str(service_name)

    networks = _mapping(document.get("networks"))
    configs = _mapping(document.get("configs"))
    secrets = _mapping(document.get("secrets"))

    for service_name, service in services.items():
        if not isinstance(service, dict):
            errors.append(f"Service '{service_name}' must be a mapping")
            continue

        if not service.get("image") and not service.get("build"):
            errors.append(f"Service '{service_name}' must have either 'image' or 'build' specified")

        for index, port in enumerate(_sequence(service.get("ports"))):
            if isinstance(port, str) and not PORT_PATTERN.match(port):
                warnings.append(f"Service '{service_name}' port {index} has unusual format: {port}")

        for index, volume in enumerate(_sequence(service.get("volumes"))):
            if isinstance(volume, str) and len(volume.split(":")) > 3:
                warnings.append(
                    f"Service '{service_name}' volume {index} has complex format "
                    f"that may not convert properly: {volume}"
                )

        try:
            dependencies = normalize_names(service.get("depends_on"))
        except ValueError:
            errors.append(f"Service '{service_name}' has an invalid 'depends_on' section")
            dependencies = []
        for dependency in dependencies:
            if dependency not in services:
                errors.append(f"Service '{service_name}' depends on undefined service '{dependency}'")

        try:
            service_networks = normalize_names(service.get("networks"))
        except ValueError:
            errors.append(f"Service '{service_name}' has an invalid 'networks' section")
            service_networks = []
        for network in service_networks:
            if network != "default" and network not in networks:
                warnings.append(f"Service '{service_name}' references undefined network '{network}'")

        for config in _sequence(service.get("configs")):
            config_name = reference_name(config)
            if config_name not in configs:
                errors.append(f"Service '{service_name}' references undefined config '{config_name}'")

        for secret in _sequence(service.get("secrets")):
            secret_name = reference_name(secret)
            if secret_name not in secrets:
                errors.append(f"Service '{service_name}' references undefined secret '{secret_name}'")

        restart = service.get("restart")
        if restart is False:
            # unquoted `no` in YAML
            restart = "no"
        if restart is not None and not RESTART_PATTERN.match(str(restart)):
            warnings.append(f"Service '{service_name}' has unrecognized restart policy '{restart}'")

        if service.get("privileged"):
            warnings.append(f"Service '{service_name}' uses privileged mode - ensure Nomad client allows this")

        if service.get("pid") == "host":
            warnings.append(f"Service '{service_name}' uses host PID namespace - may not be supported in Nomad")

        if service.get("network_mode") == "host":
            warnings.append(
                f"Service '{service_name}' uses host networking - ensure Nomad configuration supports this"
            )

        resources = _mapping(_mapping(service.get("deploy")).get("resources"))
        if resources:
            _validate_resources(service_name, resources, errors, warnings)


def _validate_resources(service_name: str, resources: Dict[str, Any], errors: List[str], warnings: List[str]):
    """
    Validates ``deploy.resources`` limits and reservations.
    """
    limits = _mapping(resources.get("limits"))
    reservations = _mapping(resources.get("reservations"))

    if limits.get("cpus") is not None and not is_valid_cpu_spec(limits["cpus"]):
        errors.append(f"Service '{service_name}' has invalid CPU limit: {limits['cpus']}")

    if limits.get("memory") is not None and not is_valid_memory_spec(limits["memory"]):
        errors.append(f"Service '{service_name}' has invalid memory limit: {limits['memory']}")

    for kind, section in (("limits", limits), ("reservations", reservations)):
        if section.get("devices"):
            warnings.append(
                f"Service '{service_name}' uses device {kind} - "
                f"ensure Nomad device plugins provide the required devices"
            )
        if section.get("generic_resources"):
            warnings.append(
                f"Service '{service_name}' uses generic resources in {kind} - "
                f"may need custom Nomad configuration"
            )


def _validate_networks(document: Dict[str, Any], warnings: List[str]):
    for network_name, network in _mapping(document.get("networks")).items():
        network = _mapping(network)
        driver = network.get("driver")
        if driver and driver not in NETWORK_DRIVERS:
            warnings.append(f"Network '{network_name}' uses driver '{driver}' which may not be supported")
        if network.get("external"):
            warnings.append(f"Network '{network_name}' is external - ensure it exists in the Nomad environment")


def _validate_volumes(document: Dict[str, Any], warnings: List[str]):
    for volume_name, volume in _mapping(document.get("volumes")).items():
        volume = _mapping(volume)
        driver = volume.get("driver")
        if driver and driver != "local":
            warnings.append(f"Volume '{volume_name}' uses driver '{driver}' - may need CSI plugin in Nomad")
        if volume.get("external"):
            warnings.append(f"Volume '{volume_name}' is external - ensure it exists in the Nomad environment")


def _validate_configs(document: Dict[str, Any], errors: List[str], warnings: List[str]):
    for config_name, config in _mapping(document.get("configs")).items():
        config = _mapping(config)
        if not config.get("file") and not config.get("content") and not config.get("external"):
            errors.append(f"Config '{config_name}' must specify either 'file', 'content', or 'external'")
        if config.get("external"):
            warnings.append(f"Config '{config_name}' is external - will be converted to Vault template")


def _validate_secrets(document: Dict[str, Any], errors: List[str], warnings: List[str]):
    for secret_name, secret in _mapping(document.get("secrets")).items():
        secret = _mapping(secret)
        if not secret.get("file") and not secret.get("external"):
            errors.append(f"Secret '{secret_name}' must specify either 'file' or 'external'")
        if secret.get("external"):
            warnings.append(f"Secret '{secret_name}' is external - will be converted to Vault template")
