"""
Models for conversion options and the results handed back to callers.
"""
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .nomad_job import Job


class ResourceDefaults(BaseModel):
    """
    Resources given to a task when the service declares none.
    """
    cpu: int = Field(default=100, gt=0, description="CPU in MHz")
    memory: int = Field(default=128, gt=0, description="Memory in MB")


class ConversionOptions(BaseModel):
    """
    Options for a single conversion.
    """
    job_name: str = "docker-compose"
    namespace: str = "default"
    region: str = "global"
    datacenters: List[str] = Field(default_factory=lambda: ["dc1"])
    priority: int = Field(default=50, ge=1, le=100)
    skip_validation: bool = False
    include_comments: bool = True
    preserve_labels: bool = True
    network_mode: str = Field(default="bridge", pattern=r"^(bridge|host|none|cni)$")
    resource_defaults: ResourceDefaults = Field(default_factory=ResourceDefaults)


class ValidationResult(BaseModel):
    """
    Diagnostics from validating a Compose document.
    """
    model_config = ConfigDict(frozen=True)

    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0


class ConversionResult(BaseModel):
    """
    The translated job, its rendering and the accumulated diagnostics.

    ``job`` is None when the conversion aborted; ``hcl`` then holds an
    ``# ERROR:`` placeholder so callers always have text to show.
    """
    model_config = ConfigDict(frozen=True)

    job: Optional[Job] = None
    hcl: str = ""
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return len(self.errors) == 0
