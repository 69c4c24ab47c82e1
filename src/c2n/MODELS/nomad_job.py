"""
Models for Nomad job specifications.

Field names match the Nomad job specification blocks they are rendered
to, so ``Job.to_document()`` is directly usable as a JSON job.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ConstraintOperator(str, Enum):
    """
    Operators accepted in Nomad constraint and affinity blocks.
    """
    EQUAL = "="
    NOT_EQUAL = "!="
    GREATER = ">"
    GREATER_EQUAL = ">="
    LESS = "<"
    LESS_EQUAL = "<="
    DISTINCT_HOSTS = "distinct_hosts"
    DISTINCT_PROPERTY = "distinct_property"
    REGEXP = "regexp"
    SET_CONTAINS = "set_contains"
    SET_CONTAINS_ALL = "set_contains_all"
    SET_CONTAINS_ANY = "set_contains_any"
    VERSION = "version"
    SEMVER = "semver"
    IS_SET = "is_set"
    IS_NOT_SET = "is_not_set"

    @classmethod
    def values(cls) -> List[str]:
        return [op.value for op in cls]


class Constraint(BaseModel):
    attribute: Optional[str] = None
    operator: str = ConstraintOperator.EQUAL.value
    value: Optional[str] = None


class Affinity(BaseModel):
    attribute: Optional[str] = None
    operator: str = ConstraintOperator.EQUAL.value
    value: Optional[str] = None
    weight: Optional[int] = None


class SpreadTarget(BaseModel):
    value: str
    percent: Optional[int] = None


class Spread(BaseModel):
    attribute: str
    weight: Optional[int] = None
    target: List[SpreadTarget] = []


class Port(BaseModel):
    """
    A named port in a group network. ``static`` is the host port.
    """
    static: Optional[int] = None
    to: Optional[int] = None


class Network(BaseModel):
    mode: str = "bridge"
    port: Dict[str, Port] = {}


class Volume(BaseModel):
    type: str
    source: str
    read_only: bool = False


class VolumeMount(BaseModel):
    volume: str
    destination: str
    read_only: bool = False


class CheckRestart(BaseModel):
    limit: int
    grace: Optional[str] = None


class Check(BaseModel):
    """
    A service health check.
    """
    type: str = "script"
    command: Optional[str] = None
    args: List[str] = []
    task: Optional[str] = None
    interval: str = "30s"
    timeout: str = "5s"
    check_restart: Optional[CheckRestart] = None


class Service(BaseModel):
    """
    A service discovery registration.
    """
    name: str
    port: Optional[str] = None
    tags: List[str] = []
    check: List[Check] = []


class Restart(BaseModel):
    """
    Group restart policy. ``attempts = 0`` with ``mode = "delay"`` restarts forever.
    """
    attempts: int = 3
    delay: str = "15s"
    interval: str = "5m"
    mode: str = "delay"


class Update(BaseModel):
    stagger: Optional[str] = None
    max_parallel: Optional[int] = None
    auto_revert: Optional[bool] = None


class Template(BaseModel):
    """
    A file rendered into the task directory.
    """
    destination: str
    embedded_tmpl: str
    change_mode: str = "restart"


class Resources(BaseModel):
    """
    Task resources. ``cpu`` is in MHz, ``memory`` in MB.
    """
    cpu: int
    memory: int


class Task(BaseModel):
    driver: str = "docker"
    config: Dict[str, Any] = {}
    env: Dict[str, str] = {}
    resources: Optional[Resources] = None
    template: List[Template] = []
    constraint: List[Constraint] = []
    volume_mount: Dict[str, VolumeMount] = {}
    kill_timeout: Optional[str] = None
    kill_signal: Optional[str] = None


class TaskGroup(BaseModel):
    count: int = 1
    network: Optional[Network] = None
    volume: Dict[str, Volume] = {}
    service: List[Service] = []
    restart: Optional[Restart] = None
    update: Optional[Update] = None
    spread: List[Spread] = []
    task: Dict[str, Task] = {}


class Job(BaseModel):
    """
    A Nomad job, the root of the translated model.
    """
    id: str
    name: str
    type: str = "service"
    region: str = "global"
    namespace: str = "default"
    datacenters: List[str] = ["dc1"]
    priority: int = 50
    constraint: List[Constraint] = []
    affinity: List[Affinity] = []
    spread: List[Spread] = []
    update: Optional[Update] = None
    group: Dict[str, TaskGroup] = {}

    def to_document(self) -> Dict[str, Any]:
        """
        Returns the job in the ``{"job": {<id>: {...}}}`` JSON shape.

        :return: A JSON serializable dictionary without unset fields.
        """
        spec = self.model_dump(mode="json", exclude_none=True)
        return {"job": {self.id: spec}}
