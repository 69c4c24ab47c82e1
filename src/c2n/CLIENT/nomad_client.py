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
Client for the Nomad HTTP API.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from pydantic import BaseModel, Field
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import NomadAPIError, NomadConnectionError

logger = logging.getLogger(__name__)


class NomadClientConfig(BaseModel):
    """
    Connection settings for a Nomad cluster.
    """
    address: str = "http://localhost:4646"
    token: Optional[str] = None
    region: str = "global"
    namespace: str = "default"
    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    retries: int = Field(default=3, ge=1, description="Attempts per request on connection errors")


@dataclass
class JobSubmission:
    """Outcome of registering a job."""

    id: str
    name: Optional[str] = None
    eval_id: Optional[str] = None
    warnings: Optional[str] = None


class NomadClient:
    """
    Minimal client for the Nomad job and status endpoints.

    Connection errors are retried with exponential backoff; HTTP error
    statuses are not retried and raise ``NomadAPIError``.
    """

    def __init__(self, config: Optional[NomadClientConfig] = None):
        """
        Initialize the client.

        Args:
            config: Connection settings. Defaults to a local agent.
        """
        self.config = config or NomadClientConfig()
        self._retrying = Retrying(
            stop=stop_after_attempt(self.config.retries),
            wait=wait_exponential(multiplier=0.5, max=5),
            retry=retry_if_exception_type(NomadConnectionError),
            reraise=True,
        )

    @property
    def address(self) -> str:
        return self.config.address.rstrip("/")

    def _params(self, **extra: str) -> str:
        params = {"region": self.config.region, "namespace": self.config.namespace}
        params.update(extra)
        return urlencode(params)

    def _send(self, request: Request) -> Any:
        try:
            with urlopen(request, timeout=self.config.timeout) as response:
                body = response.read().decode()
        except HTTPError as e:
            message = e.read().decode(errors="replace").strip() or e.reason
            raise NomadAPIError(e.code, message) from e
        except URLError as e:
            raise NomadConnectionError(f"Unable to reach Nomad at {self.address}: {e.reason}") from e
        return json.loads(body) if body else None

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """Make a request to the Nomad API and decode the JSON response."""
        url = f"{self.address}{path}"
        data = json.dumps(payload).encode() if payload is not None else None

        request = Request(url, data=data, method=method)
        request.add_header("Content-Type", "application/json")
        if self.config.token:
            request.add_header("X-Nomad-Token", self.config.token)

        logger.debug("%s %s", method, url)
        return self._retrying(self._send, request)

    def parse_job(self, hcl: str) -> Dict[str, Any]:
        """
        Parse HCL into a canonical JSON job on the server.

        Args:
            hcl: The job specification.

        Returns:
            The API representation of the job.
        """
        return self._request("POST", "/v1/jobs/parse", {"JobHCL": hcl, "Canonicalize": True})

    def submit_job(self, hcl: str) -> JobSubmission:
        """
        Register a job given as HCL.

        Args:
            hcl: The job specification.

        Returns:
            The registered job id and its evaluation.
        """
        job = self.parse_job(hcl)
        job["Region"] = job.get("Region") or self.config.region
        job["Namespace"] = job.get("Namespace") or self.config.namespace

        response = self._request("POST", f"/v1/jobs?{self._params()}", {"Job": job}) or {}
        logger.debug("Registered job %s (evaluation %s)", job.get("ID"), response.get("EvalID"))
        return JobSubmission(
            id=job["ID"],
            name=job.get("Name"),
            eval_id=response.get("EvalID"),
            warnings=response.get("Warnings") or None,
        )

    def get_job(self, job_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v1/job/{quote(job_id)}?{self._params()}")

    def get_job_allocations(self, job_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/v1/job/{quote(job_id)}/allocations?{self._params()}") or []

    def get_job_evaluations(self, job_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/v1/job/{quote(job_id)}/evaluations?{self._params()}") or []

    def stop_job(self, job_id: str, purge: bool = False) -> Dict[str, Any]:
        """
        Stop (deregister) a job.

        Args:
            job_id: The job to stop.
            purge: Also remove the job from the state store.
        """
        extra = {"purge": "true"} if purge else {}
        return self._request("DELETE", f"/v1/job/{quote(job_id)}?{self._params(**extra)}") or {}

    def health_check(self) -> bool:
        """Return True when the cluster has an elected leader and answers."""
        try:
            self._request("GET", "/v1/status/leader")
            return True
        except (NomadAPIError, NomadConnectionError) as e:
            logger.debug("Health check failed: %s", e)
            return False

    def get_status(self) -> Dict[str, Any]:
        """Return the current leader and the server peers."""
        return {
            "leader": self._request("GET", "/v1/status/leader"),
            "servers": self._request("GET", "/v1/status/peers") or [],
        }
