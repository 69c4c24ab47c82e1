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
Models for Docker Compose services.

Compose accepts several shapes for many fields (lists or mappings, short
strings or long objects). Each of those fields has one normalization
function below, applied as a ``before`` validator, so the converter only
ever sees the canonical form.
"""
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


def _scalar_to_str(value: Any) -> str:
    """
    Renders a YAML scalar the way Compose does when it needs a string.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def normalize_key_values(value: Any) -> Dict[str, str]:
    """
    Normalizes a ``KEY=VALUE`` list or a mapping into a flat string mapping.

    Used for ``environment``, ``labels`` and ``sysctls``. A list entry
    without ``=`` maps to an empty string; later duplicates win.

    :param value: The raw field value.
    :return: A string to string mapping.
    """
    if value is None:
        return {}
    result: Dict[str, str] = {}
    if isinstance(value, dict):
        for key, item in value.items():
            result[str(key)] = _scalar_to_str(item)
        return result
    if isinstance(value, (list, tuple)):
        for entry in value:
            key, _, item = str(entry).partition("=")
            if key:
                result[key] = item
        return result
    raise ValueError(f"expected a list or a mapping, got {type(value).__name__}")


def normalize_names(value: Any) -> List[str]:
    """
    Normalizes a list of names or a mapping keyed by name into a list.

    Used for ``depends_on`` and ``networks``.
    """
    if value is None:
        return []
    if isinstance(value, dict):
        return [str(k) for k in value.keys()]
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    raise ValueError(f"expected a list or a mapping, got {type(value).__name__}")


def normalize_string_list(value: Any) -> List[str]:
    """
    Ensures a value is a list of strings.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [_scalar_to_str(v) for v in value]
    return [_scalar_to_str(value)]


def normalize_extra_hosts(value: Any) -> List[str]:
    """
    Normalizes ``extra_hosts`` into ``host:ip`` strings.
    """
    if isinstance(value, dict):
        return [f"{host}:{ip}" for host, ip in value.items()]
    return normalize_string_list(value)


PORT_RANGE = re.compile(r"^(\d+)-(\d+)$")


def _port_number(value: Any, raw: Any) -> int:
    text = str(value).strip()
    match = PORT_RANGE.match(text)
    if match:
        # a range is mapped through its first port
        return int(match.group(1))
    if not text.isdigit():
        raise ValueError(f"invalid port '{value}' in {raw}")
    return int(text)


def _is_range(*values: Any) -> bool:
    return any(PORT_RANGE.match(str(value).strip()) for value in values if value is not None)


class PortMapping(BaseModel):
    """
    A published or container port, in long form.

    ``port_range`` keeps the original entry when it declared a range; only
    the first port of such a range is mapped.
    """
    target: int
    published: Optional[int] = None
    protocol: str = "tcp"
    mode: Optional[str] = None
    host_ip: Optional[str] = None
    port_range: Optional[str] = None


def parse_port(raw: Any) -> PortMapping:
    """
    Parses a single ``ports`` entry.

    Accepts a bare number, a short string ``[ip:][published:]target[/protocol]``
    (an IPv6 host ip is written in brackets) or a long-form mapping.

    :param raw: The raw entry.
    :return: The port mapping.
    :raises ValueError: If the entry cannot be parsed.
    """
    if isinstance(raw, PortMapping):
        return raw
    if isinstance(raw, bool):
        raise ValueError(f"invalid port {raw!r}")
    if isinstance(raw, int):
        return PortMapping(target=raw)
    if isinstance(raw, dict):
        if raw.get("target") is None:
            raise ValueError(f"long-form port is missing 'target': {raw}")
        published = raw.get("published")
        return PortMapping(
            target=_port_number(raw["target"], raw),
            published=_port_number(published, raw) if published not in (None, "") else None,
            protocol=raw.get("protocol") or "tcp",
            mode=raw.get("mode"),
            host_ip=raw.get("host_ip"),
            port_range=str(raw) if _is_range(raw["target"], published) else None,
        )

    spec = str(raw).strip()
    protocol = "tcp"
    if "/" in spec:
        spec, protocol = spec.rsplit("/", 1)

    host_ip = None
    if spec.startswith("["):
        host_ip, _, spec = spec[1:].partition("]")
        if not spec.startswith(":"):
            raise ValueError(f"unrecognized port format: {raw}")
        spec = spec[1:]

    parts = spec.split(":")
    if len(parts) == 3 and host_ip is None:
        host_ip = parts.pop(0) or None
    if len(parts) > 2:
        raise ValueError(f"unrecognized port format: {raw}")
    if host_ip is not None and len(parts) == 1:
        raise ValueError(f"unrecognized port format: {raw}")

    published = parts[0] if len(parts) == 2 and parts[0] else None
    return PortMapping(
        target=_port_number(parts[-1], raw),
        published=_port_number(published, raw) if published is not None else None,
        protocol=protocol,
        host_ip=host_ip,
        port_range=str(raw) if _is_range(*parts) else None,
    )


def parse_expose(raw: Any) -> int:
    """
    Parses an ``expose`` entry, dropping any ``/protocol`` suffix.
    """
    return _port_number(str(raw).split("/", 1)[0], raw)


class VolumeSpec(BaseModel):
    """
    A service volume in long form. ``source`` is None for anonymous volumes.
    """
    type: str = "volume"
    source: Optional[str] = None
    target: str
    read_only: bool = False


def parse_volume(raw: Any) -> VolumeSpec:
    """
    Parses a single service ``volumes`` entry.

    Short form is ``source:target[:mode]`` or just ``target`` for an
    anonymous volume; ``ro`` anywhere in the comma separated mode makes the
    mount read-only.

    :param raw: The raw entry.
    :return: The volume spec.
    """
    if isinstance(raw, VolumeSpec):
        return raw
    if isinstance(raw, dict):
        if not raw.get("target"):
            raise ValueError(f"long-form volume is missing 'target': {raw}")
        return VolumeSpec(
            type=raw.get("type") or "volume",
            source=raw.get("source"),
            target=raw["target"],
            read_only=bool(raw.get("read_only", False)),
        )

    parts = str(raw).split(":")
    if len(parts) == 1:
        return VolumeSpec(target=parts[0])

    source, target = parts[0], parts[1]
    mode = parts[2] if len(parts) >= 3 else ""
    is_path = source.startswith(("/", ".", "~"))
    return VolumeSpec(
        type="bind" if is_path else "volume",
        source=source,
        target=target,
        read_only="ro" in mode.split(","),
    )


class DeviceMapping(BaseModel):
    """
    A host device exposed to the container.
    """
    host_path: str
    container_path: str
    cgroup_permissions: str = "rwm"


def parse_device(raw: Any) -> DeviceMapping:
    """
    Parses a ``devices`` entry from ``host[:container[:perms]]`` or a mapping.
    """
    if isinstance(raw, DeviceMapping):
        return raw
    if isinstance(raw, dict):
        return DeviceMapping(
            host_path=raw.get("source", ""),
            container_path=raw.get("target", ""),
            cgroup_permissions=raw.get("permissions") or "rwm",
        )
    parts = str(raw).split(":")
    return DeviceMapping(
        host_path=parts[0],
        container_path=parts[1] if len(parts) > 1 and parts[1] else parts[0],
        cgroup_permissions=parts[2] if len(parts) > 2 and parts[2] else "rwm",
    )


class FileReference(BaseModel):
    """
    A service's reference to a top-level config or secret.
    """
    source: str
    target: Optional[str] = None


def parse_file_reference(raw: Any) -> FileReference:
    if isinstance(raw, FileReference):
        return raw
    if isinstance(raw, dict):
        return FileReference(source=raw["source"], target=raw.get("target"))
    return FileReference(source=str(raw))


def reference_name(raw: Any) -> str:
    """
    Returns the referenced name of a config or secret entry in either form.
    """
    if isinstance(raw, dict):
        return str(raw.get("source", ""))
    return str(raw)


class HealthCheck(BaseModel):
    """
    A Compose health check. ``test`` is kept in its raw shape.
    """
    test: Optional[Union[str, List[str]]] = None
    interval: Optional[str] = None
    timeout: Optional[str] = None
    retries: Optional[int] = None
    start_period: Optional[str] = None
    disable: bool = False

    @field_validator("interval", "timeout", "start_period", mode="before")
    @classmethod
    def _duration(cls, value):
        if value is None or isinstance(value, str):
            return value
        return f"{value}s"

    @field_validator("test", mode="before")
    @classmethod
    def _test(cls, value):
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value]
        return value

    @property
    def enabled(self) -> bool:
        if self.disable or not self.test:
            return False
        if isinstance(self.test, list) and self.test[0] == "NONE":
            return False
        return True


class ResourceSpec(BaseModel):
    cpus: Optional[Union[float, str]] = None
    memory: Optional[Union[int, str]] = None
    pids: Optional[int] = None
    devices: Optional[List[Any]] = None
    generic_resources: Optional[List[Any]] = None


class Resources(BaseModel):
    limits: Optional[ResourceSpec] = None
    reservations: Optional[ResourceSpec] = None


class RestartPolicyConfig(BaseModel):
    """
    The ``deploy.restart_policy`` block.
    """
    condition: Optional[str] = None
    delay: Optional[str] = None
    max_attempts: Optional[int] = None
    window: Optional[str] = None


class Placement(BaseModel):
    constraints: List[str] = []
    preferences: List[Dict[str, Any]] = []


class UpdateConfig(BaseModel):
    parallelism: Optional[int] = None
    delay: Optional[str] = None
    failure_action: Optional[str] = None
    monitor: Optional[str] = None
    order: Optional[str] = None


class Deploy(BaseModel):
    """
    The ``deploy`` section of a service.
    """
    mode: Optional[str] = None
    replicas: Optional[int] = None
    resources: Optional[Resources] = None
    restart_policy: Optional[RestartPolicyConfig] = None
    placement: Optional[Placement] = None
    update_config: Optional[UpdateConfig] = None
    labels: Dict[str, str] = {}

    @field_validator("labels", mode="before")
    @classmethod
    def _labels(cls, value):
        return normalize_key_values(value)


class Logging(BaseModel):
    driver: Optional[str] = None
    options: Dict[str, Any] = {}


class ComposeService(BaseModel):
    """
    A single Compose service, with every polymorphic field normalized.
    """
    model_config = ConfigDict(extra="ignore")

    # Identity
    image: Optional[str] = None
    build: Optional[Union[str, Dict[str, Any]]] = None
    container_name: Optional[str] = None
    hostname: Optional[str] = None

    # Execution
    command: Optional[Union[str, List[str]]] = None
    entrypoint: Optional[Union[str, List[str]]] = None
    working_dir: Optional[str] = None
    user: Optional[str] = None
    environment: Dict[str, str] = {}
    env_file: List[str] = []

    # Networking
    ports: List[PortMapping] = []
    expose: List[int] = []
    networks: List[str] = []
    network_mode: Optional[str] = None
    dns: List[str] = []
    dns_search: List[str] = []
    extra_hosts: List[str] = []
    links: List[str] = []

    # Storage
    volumes: List[VolumeSpec] = []
    tmpfs: List[str] = []
    configs: List[FileReference] = []
    secrets: List[FileReference] = []

    # Security and resources
    privileged: bool = False
    read_only: bool = False
    security_opt: List[str] = []
    cap_add: List[str] = []
    cap_drop: List[str] = []
    devices: List[DeviceMapping] = []
    pid: Optional[str] = None
    ipc: Optional[str] = None
    init: Optional[bool] = None
    shm_size: Optional[Union[int, str]] = None
    ulimits: Dict[str, Union[int, Dict[str, int]]] = {}
    sysctls: Dict[str, str] = {}
    cpus: Optional[Union[float, str]] = None
    mem_limit: Optional[Union[int, str]] = None
    deploy: Optional[Deploy] = None

    # Lifecycle
    healthcheck: Optional[HealthCheck] = None
    depends_on: List[str] = []
    restart: Optional[str] = None
    stop_signal: Optional[str] = None
    stop_grace_period: Optional[str] = None

    # Metadata
    labels: Dict[str, str] = {}
    logging: Optional[Logging] = None
    profiles: List[str] = []

    @field_validator("environment", "labels", "sysctls", mode="before")
    @classmethod
    def _key_values(cls, value):
        return normalize_key_values(value)

    @field_validator("depends_on", "networks", mode="before")
    @classmethod
    def _names(cls, value):
        return normalize_names(value)

    @field_validator("env_file", "dns", "dns_search", "tmpfs", "links", "security_opt", "cap_add", "cap_drop", mode="before")
    @classmethod
    def _string_lists(cls, value):
        return normalize_string_list(value)

    @field_validator("extra_hosts", mode="before")
    @classmethod
    def _extra_hosts(cls, value):
        return normalize_extra_hosts(value)

    @field_validator("ports", mode="before")
    @classmethod
    def _ports(cls, value):
        return [parse_port(p) for p in value or []]

    @field_validator("expose", mode="before")
    @classmethod
    def _expose(cls, value):
        return [parse_expose(p) for p in value or []]

    @field_validator("volumes", mode="before")
    @classmethod
    def _volumes(cls, value):
        return [parse_volume(v) for v in value or []]

    @field_validator("devices", mode="before")
    @classmethod
    def _devices(cls, value):
        return [parse_device(d) for d in value or []]

    @field_validator("configs", "secrets", mode="before")
    @classmethod
    def _file_references(cls, value):
        return [parse_file_reference(r) for r in value or []]

    @field_validator("user", "stop_grace_period", mode="before")
    @classmethod
    def _stringify(cls, value):
        return None if value is None else _scalar_to_str(value)

    @field_validator("restart", mode="before")
    @classmethod
    def _restart(cls, value):
        # unquoted `no` loads as False
        if value is False:
            return "no"
        return value

    @field_validator("command", "entrypoint", mode="before")
    @classmethod
    def _command(cls, value):
        if isinstance(value, (list, tuple)):
            return [_scalar_to_str(v) for v in value]
        return value


class ComposeFileEntry(BaseModel):
    """
    A top-level ``configs`` or ``secrets`` entry.
    """
    model_config = ConfigDict(extra="ignore")

    file: Optional[str] = None
    content: Optional[str] = None
    environment: Optional[str] = None
    external: Union[bool, Dict[str, Any]] = False
    name: Optional[str] = None
