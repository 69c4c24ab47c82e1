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
Deployment of Compose applications to a Nomad cluster.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tenacity import RetryError, Retrying, retry_if_exception_type, retry_if_result, stop_after_delay, wait_fixed

from ..CONVERTERS.to_nomad import convert_compose
from ..errors import C2NError, DeploymentError, NomadConnectionError
from ..MODELS.conversion import ConversionOptions
from .nomad_client import NomadClient

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    success: bool = False
    message: str = ""
    job_id: Optional[str] = None
    job_url: Optional[str] = None
    hcl: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class DeploymentService:
    """
    Validates, converts and submits Compose applications.
    """

    def __init__(
        self,
        client: NomadClient,
        options: Optional[ConversionOptions] = None,
        env_file: Optional[str] = None,
        poll_interval: float = 2.0,
    ):
        """
        Initializes the deployment service.

        :param client: The Nomad client jobs are submitted through.
        :param options: Conversion options for every deployment.
        :param env_file: Optional .env file used for interpolation.
        :param poll_interval: Seconds between job status polls while waiting.
        """
        self.client = client
        self.options = options or ConversionOptions()
        self.env_file = env_file
        self.poll_interval = poll_interval

    def deploy_compose_file(self, compose_path: str, **kwargs) -> DeployResult:
        """
        Deploys a Compose file. Accepts the keyword arguments of
        ``deploy_compose_content``.

        :param compose_path: Path to the compose file.
        :return: The deployment result.
        """
        try:
            with open(compose_path, "r") as f:
                content = f.read()
        except OSError as e:
            return DeployResult(message="Unable to read Docker Compose file", errors=[str(e)])
        return self.deploy_compose_content(content, **kwargs)

    def deploy_compose_content(
        self,
        content: str,
        dry_run: bool = False,
        wait: bool = False,
        timeout: float = 300.0,
        force: bool = False,
    ) -> DeployResult:
        """
        Converts Compose YAML and submits the resulting job.

        :param content: The Compose YAML.
        :param dry_run: Stop after conversion; ``hcl`` holds the job.
        :param wait: Block until the job is running.
        :param timeout: Seconds to wait for the job when ``wait`` is set.
        :param force: Submit the job even when some services failed to convert.
        :return: The deployment result.
        """
        conversion = convert_compose(content, self.options, env_file=self.env_file)
        result = DeployResult(hcl=conversion.hcl, warnings=list(conversion.warnings))

        if conversion.job is None or (conversion.errors and not force):
            result.errors.extend(conversion.errors)
            result.message = "Failed to convert Docker Compose to Nomad HCL"
            return result
        # with force, failed services are left out of the submitted job
        result.warnings.extend(conversion.errors)

        if dry_run:
            result.success = True
            result.message = "Dry run completed successfully"
            return result

        try:
            submission = self.client.submit_job(conversion.hcl)
            result.job_id = submission.id
            result.job_url = f"{self.client.address}/ui/jobs/{submission.id}"
            if submission.warnings:
                result.warnings.append(submission.warnings)
            if wait:
                self.wait_for_deployment(submission.id, timeout)
        except C2NError as e:
            result.errors.append(str(e))
            result.message = "Deployment failed"
            return result

        result.success = True
        result.message = f"Job deployed successfully with ID: {result.job_id}"
        return result

    def _job_status(self, job_id: str) -> Optional[str]:
        status = self.client.get_job(job_id).get("Status")
        logger.debug("Job %s status: %s", job_id, status)
        if status == "dead":
            raise DeploymentError(f"Job deployment failed with status: {status}")
        return status

    def wait_for_deployment(self, job_id: str, timeout: float = 300.0):
        """
        Polls the job until it is running.

        :param job_id: The job to watch.
        :param timeout: Seconds before giving up.
        :raises DeploymentError: If the job dies or the timeout expires.
        """
        retrying = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_result(lambda status: status != "running")
            | retry_if_exception_type(NomadConnectionError),
            reraise=True,
        )
        try:
            retrying(self._job_status, job_id)
        except RetryError as e:
            raise DeploymentError(f"Deployment timeout after {timeout}s") from e

    def get_deployment_status(self, job_id: str) -> Dict[str, Any]:
        return {
            "job": self.client.get_job(job_id),
            "allocations": self.client.get_job_allocations(job_id),
            "evaluations": self.client.get_job_evaluations(job_id),
        }

    def stop_job(self, job_id: str, purge: bool = False):
        self.client.stop_job(job_id, purge=purge)
