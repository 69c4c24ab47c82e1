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
Converter from a parsed Docker Compose document to a Nomad job.

Each Compose service becomes a task group holding a single docker task of
the same name. Lossy or best-effort mappings are reported as warnings;
a service that cannot be converted is reported as an error and left out
of the job while the remaining services are still converted.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..errors import C2NError
from ..GENERATORS.hcl_generator import generate_hcl
from ..MODELS.compose_file import ComposeFileEntry, ComposeService, HealthCheck
from ..MODELS.conversion import ConversionOptions, ConversionResult
from ..MODELS.nomad_job import (
    Affinity,
    Check,
    CheckRestart,
    Constraint,
    ConstraintOperator,
    Job,
    Network,
    Port,
    Resources,
    Restart,
    Service,
    Spread,
    SpreadTarget,
    Task,
    TaskGroup,
    Template,
    Update,
    Volume,
    VolumeMount,
)
from ..PARSERS.compose_parser import ComposeParser
from ..UTILS.units import parse_bytes, parse_cpu, parse_memory
from ..VALIDATION.compose_validator import validate_compose_file

logger = logging.getLogger(__name__)

SERVICE_TAG = "docker-compose"
EXTENSION_KEY = "x-nomad"

SECRET_TEMPLATE = '{{{{ with secret "secret/data/{name}" }}}}{{{{ .Data.data.value }}}}{{{{ end }}}}'

# Swarm placement attributes and their Nomad interpolations
SWARM_ATTRIBUTES = {
    "node.hostname": "${node.unique.name}",
    "node.id": "${node.unique.id}",
    "node.platform.os": "${attr.kernel.name}",
    "node.platform.arch": "${attr.cpu.arch}",
}
SWARM_LABEL_PREFIXES = ("node.labels.", "engine.labels.")

_COMPACT_CONSTRAINT = re.compile(r"^(?P<attribute>[^\s=!]+)\s*(?P<operator>==|!=)\s*(?P<value>.+)$")


def _describe(error: Exception) -> str:
    if isinstance(error, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in detail['loc'])}: {detail['msg']}" for detail in error.errors()
        )
    return str(error)


class ComposeToNomadConverter:
    """
    Converts Compose documents into Nomad jobs.

    An instance only holds the diagnostics of the conversion in progress;
    ``convert`` resets them, so instances can be reused but not shared
    between threads.
    """

    def __init__(self, options: Optional[Union[ConversionOptions, Dict[str, Any]]] = None):
        """
        Initializes the converter.

        :param options: Conversion options, as a model or a plain mapping.
        """
        if isinstance(options, dict):
            options = ConversionOptions(**options)
        self.options = options or ConversionOptions()
        self.warnings: List[str] = []
        self.errors: List[str] = []

    def convert(self, document: Any) -> ConversionResult:
        """
        Converts a parsed Compose document.

        :param document: The generic document tree.
        :return: The job, its HCL rendering and the diagnostics.
        """
        self.warnings = []
        self.errors = []

        if not isinstance(document, dict):
            return self._abort("Invalid YAML structure: the document root must be a mapping")

        if not self.options.skip_validation:
            validation = validate_compose_file(document)
            self.warnings.extend(validation.warnings)
            if not validation.is_valid:
                self.errors.extend(validation.errors)
                return self._abort(f"Validation failed: {', '.join(validation.errors)}")

        job = self._convert_job(document)
        hcl = generate_hcl(job, include_comments=self.options.include_comments)
        return ConversionResult(job=job, hcl=hcl, errors=tuple(self.errors), warnings=tuple(self.warnings))

    def _abort(self, message: str) -> ConversionResult:
        if not self.errors:
            self.errors.append(message)
        logger.debug("Conversion aborted: %s", message)
        return ConversionResult(
            job=None,
            hcl=f"# ERROR: {message}",
            errors=tuple(self.errors),
            warnings=tuple(self.warnings),
        )

    def _convert_job(self, document: Dict[str, Any]) -> Job:
        """
        Builds the job, one task group per service in declaration order.
        """
        job_name = str(document.get("name") or self.options.job_name)
        job = Job(
            id=job_name,
            name=job_name,
            region=self.options.region,
            namespace=self.options.namespace,
            datacenters=list(self.options.datacenters),
            priority=self.options.priority,
            update=Update(stagger="10s", max_parallel=2),
        )

        services = document.get("services")
        if not isinstance(services, dict):
            services = {}

        taken: Dict[str, str] = {}
        for service_name, raw in services.items():
            name = str(service_name)
            if name.lower() in taken:
                self.errors.append(
                    f"Failed to convert service '{name}': name collides with service '{taken[name.lower()]}'"
                )
                continue
            try:
                group = self._convert_service(name, raw, document)
            except Exception as e:
                logger.debug("Service '%s' failed to convert", name, exc_info=True)
                self.errors.append(f"Failed to convert service '{name}': {_describe(e)}")
                continue
            taken[name.lower()] = name
            job.group[name] = group

        extension = document.get(EXTENSION_KEY)
        if isinstance(extension, dict):
            try:
                self._apply_extension(job, extension)
            except Exception as e:
                self.errors.append(f"Failed to convert '{EXTENSION_KEY}': {_describe(e)}")

        return job

    def _apply_extension(self, job: Job, extension: Dict[str, Any]):
        """
        Applies job-level scheduling from the ``x-nomad`` extension.
        """
        job.constraint = self._convert_constraints(extension.get("constraints") or [])

        for raw in extension.get("affinities") or []:
            operator = self._operator(str(raw.get("operator", "=")))
            job.affinity.append(
                Affinity(
                    attribute=raw.get("attribute"),
                    operator=operator,
                    value=None if raw.get("value") is None else str(raw["value"]),
                    weight=raw.get("weight"),
                )
            )

        for raw in extension.get("spreads") or []:
            targets = raw.get("target") or []
            if isinstance(targets, dict):
                targets = [{"value": value, "percent": percent} for value, percent in targets.items()]
            job.spread.append(
                Spread(
                    attribute=raw["attribute"],
                    weight=raw.get("weight"),
                    target=[SpreadTarget(value=str(t["value"]), percent=t.get("percent")) for t in targets],
                )
            )

    def _convert_service(self, name: str, raw: Any, document: Dict[str, Any]) -> TaskGroup:
        """
        Converts one Compose service into a task group.

        :param name: The service name, reused for the group and the task.
        :param raw: The raw service mapping.
        :param document: The whole document, for top-level configs and secrets.
        :return: The task group.
        """
        if not isinstance(raw, dict):
            raise ValueError("service definition must be a mapping")
        logger.debug("Converting service '%s'", name)

        service = ComposeService.model_validate(raw)
        self._warn_unsupported(name, service)

        task = self._convert_task(name, service, document)
        group = TaskGroup(count=self._replicas(service), task={name: task})

        if service.ports or service.expose:
            group.network = self._convert_network(name, service)

        if service.volumes:
            group.volume, task.volume_mount = self._convert_volumes(name, service)

        group.service = self._convert_discovery(name, service)

        deploy = service.deploy
        if service.restart or (deploy and deploy.restart_policy):
            group.restart = self._convert_restart_policy(service)

        if deploy and deploy.update_config:
            update = deploy.update_config
            group.update = Update(
                max_parallel=update.parallelism,
                stagger=update.delay,
                auto_revert=True if update.failure_action == "rollback" else None,
            )

        if deploy and deploy.placement:
            for preference in deploy.placement.preferences:
                if preference.get("spread"):
                    group.spread.append(Spread(attribute=self._placement_attribute(str(preference["spread"]))))

        return group

    def _warn_unsupported(self, name: str, service: ComposeService):
        """
        Records warnings for Compose features with no Nomad counterpart.
        """
        if service.build and service.image:
            self.warnings.append(f"Service '{name}' defines 'build' - Nomad cannot build images, using '{service.image}'")
        elif service.build:
            self.warnings.append(
                f"Service '{name}' defines 'build' without 'image' - push the built image and set 'image' before deploying"
            )
        if service.container_name:
            self.warnings.append(f"Service '{name}' sets 'container_name', which Nomad ignores")
        if service.links:
            self.warnings.append(f"Service '{name}' uses 'links' - use Nomad service discovery instead")
        if service.env_file:
            self.warnings.append(
                f"Service '{name}' uses 'env_file' ({', '.join(service.env_file)}) - its variables are not included"
            )
        if service.depends_on:
            self.warnings.append(
                f"Service dependencies for '{name}' ({', '.join(service.depends_on)}) have no Nomad equivalent "
                f"and are only honoured through explicitly configured constraints"
            )
        if service.deploy and service.deploy.mode == "global":
            self.warnings.append(f"Service '{name}' uses global deploy mode - consider a Nomad system job")
        if service.network_mode and service.network_mode.startswith(("service:", "container:")):
            self.warnings.append(
                f"Service '{name}' shares the network of '{service.network_mode}' - "
                f"using network mode '{self.options.network_mode}'"
            )

    def _replicas(self, service: ComposeService) -> int:
        if service.deploy and service.deploy.replicas is not None:
            return service.deploy.replicas
        return 1

    def _convert_task(self, name: str, service: ComposeService, document: Dict[str, Any]) -> Task:
        task = Task(
            driver="docker",
            config=self._convert_docker_config(service),
            env=dict(service.environment),
            resources=self._convert_resources(name, service),
            template=self._convert_configs_and_secrets(name, service, document),
            kill_timeout=service.stop_grace_period,
            kill_signal=service.stop_signal,
        )
        if service.deploy and service.deploy.placement and service.deploy.placement.constraints:
            task.constraint = self._convert_constraints(service.deploy.placement.constraints, placement=True)
        return task

    def _convert_docker_config(self, service: ComposeService) -> Dict[str, Any]:
        """
        Builds the docker driver ``config`` block.
        """
        config: Dict[str, Any] = {}

        if service.image:
            config["image"] = service.image

        if isinstance(service.command, list):
            if service.command:
                config["command"] = service.command[0]
            if len(service.command) > 1:
                config["args"] = service.command[1:]
        elif service.command:
            config["command"] = service.command

        if isinstance(service.entrypoint, list):
            if service.entrypoint:
                config["entrypoint"] = service.entrypoint
        elif service.entrypoint:
            config["entrypoint"] = [service.entrypoint]

        if service.working_dir:
            config["work_dir"] = service.working_dir
        if service.user:
            config["user"] = service.user
        if service.hostname:
            config["hostname"] = service.hostname
        if service.privileged:
            config["privileged"] = True
        if service.read_only:
            config["readonly_rootfs"] = True
        if service.security_opt:
            config["security_opt"] = service.security_opt
        if service.cap_add or service.cap_drop:
            config["cap_add"] = service.cap_add
            config["cap_drop"] = service.cap_drop

        if service.devices:
            config["devices"] = [device.model_dump() for device in service.devices]

        if self.options.preserve_labels:
            # container labels win over deploy labels
            labels = dict(service.deploy.labels) if service.deploy else {}
            labels.update(service.labels)
            if labels:
                config["labels"] = labels

        if service.dns:
            config["dns_servers"] = service.dns
        if service.dns_search:
            config["dns_search_domains"] = service.dns_search
        if service.extra_hosts:
            config["extra_hosts"] = service.extra_hosts

        if service.logging:
            config["logging"] = {
                "type": service.logging.driver or "json-file",
                "config": {key: str(value) for key, value in service.logging.options.items()},
            }

        if service.ulimits:
            ulimit = {}
            for key, value in service.ulimits.items():
                if isinstance(value, dict):
                    ulimit[key] = f"{value.get('soft', '')}:{value.get('hard', '')}"
                else:
                    ulimit[key] = str(value)
            config["ulimit"] = ulimit
        if service.sysctls:
            config["sysctl"] = dict(service.sysctls)
        if service.shm_size is not None:
            config["shm_size"] = parse_bytes(service.shm_size)
        if service.init is not None:
            config["init"] = service.init
        if service.ipc:
            config["ipc_mode"] = service.ipc
        if service.pid:
            config["pid_mode"] = service.pid

        mounts = [{"type": "tmpfs", "target": entry.split(":", 1)[0]} for entry in service.tmpfs]
        mounts.extend(
            {"type": "tmpfs", "target": volume.target, "readonly": volume.read_only}
            for volume in service.volumes
            if volume.type == "tmpfs"
        )
        if mounts:
            config["mount"] = mounts

        network_mode = service.network_mode
        if not network_mode or network_mode.startswith(("service:", "container:")):
            network_mode = self.options.network_mode
        config["network_mode"] = network_mode

        return config

    def _convert_resources(self, name: str, service: ComposeService) -> Resources:
        """
        Computes CPU (MHz) and memory (MB) for the task.

        Limits override the defaults and reservations raise the result;
        the legacy ``cpus``/``mem_limit`` fields only apply when ``deploy``
        set nothing for that resource.
        """
        defaults = self.options.resource_defaults
        cpu, memory = defaults.cpu, defaults.memory
        cpu_set = memory_set = False

        resources = service.deploy.resources if service.deploy else None
        if resources and resources.limits:
            if resources.limits.cpus is not None:
                cpu, cpu_set = parse_cpu(resources.limits.cpus), True
            if resources.limits.memory is not None:
                memory, memory_set = self._memory(name, resources.limits.memory), True
        if resources and resources.reservations:
            if resources.reservations.cpus is not None:
                cpu, cpu_set = max(cpu, parse_cpu(resources.reservations.cpus)), True
            if resources.reservations.memory is not None:
                memory, memory_set = max(memory, self._memory(name, resources.reservations.memory)), True

        if not memory_set and service.mem_limit is not None:
            memory = self._memory(name, service.mem_limit)
        if not cpu_set and service.cpus is not None:
            cpu = parse_cpu(service.cpus)

        return Resources(cpu=cpu, memory=memory)

    def _memory(self, name: str, value: Union[int, str]) -> int:
        try:
            return parse_memory(value)
        except ValueError:
            self.warnings.append(f"Service '{name}': unable to parse memory value: {value}")
            return self.options.resource_defaults.memory

    def _convert_network(self, name: str, service: ComposeService) -> Network:
        network = Network(mode=self.options.network_mode)
        for index, port in enumerate(service.ports):
            if port.port_range:
                self.warnings.append(
                    f"Service '{name}' port range '{port.port_range}' is mapped to its first port only"
                )
            network.port[f"port_{index}"] = Port(static=port.published, to=port.target)
        for index, port in enumerate(service.expose):
            network.port[f"expose_{index}"] = Port(to=port)
        return network

    def _convert_volumes(self, name: str, service: ComposeService):
        """
        Builds group volumes and the matching task mounts.

        Entries are named after their position in the service's volume list.
        """
        volumes: Dict[str, Volume] = {}
        mounts: Dict[str, VolumeMount] = {}

        for index, spec in enumerate(service.volumes):
            if spec.type == "tmpfs":
                # rendered as a docker mount
                continue
            if not spec.source:
                self.warnings.append(
                    f"Service '{name}' anonymous volume '{spec.target}' has no Nomad equivalent and was skipped"
                )
                continue

            is_host = spec.source.startswith("/")
            if not is_host and spec.type == "bind":
                self.warnings.append(
                    f"Service '{name}' bind mount '{spec.source}' is not an absolute path - converted to a CSI volume"
                )

            volume_name = f"volume_{index}"
            volumes[volume_name] = Volume(
                type="host" if is_host else "csi",
                source=spec.source,
                read_only=spec.read_only,
            )
            mounts[f"mount_{index}"] = VolumeMount(
                volume=volume_name,
                destination=spec.target,
                read_only=spec.read_only,
            )

        return volumes, mounts

    def _convert_discovery(self, name: str, service: ComposeService) -> List[Service]:
        """
        Registers one service per port, or a single port-less service.
        """
        check = None
        if service.healthcheck and service.healthcheck.enabled:
            check = self._convert_health_check(name, service.healthcheck)
        checks = [check] if check else []

        port_labels = [f"port_{i}" for i in range(len(service.ports))]
        port_labels += [f"expose_{i}" for i in range(len(service.expose))]
        if not port_labels:
            return [Service(name=name, tags=[SERVICE_TAG], check=checks)]

        return [
            Service(name=f"{name}-{index}", port=label, tags=[SERVICE_TAG], check=[c.model_copy() for c in checks])
            for index, label in enumerate(port_labels)
        ]

    def _convert_health_check(self, name: str, healthcheck: HealthCheck) -> Optional[Check]:
        """
        Converts a Compose health check into a Nomad script check.

        ``CMD`` runs the command directly; ``CMD-SHELL`` and the plain string
        form run through ``/bin/sh -c``.
        """
        test = healthcheck.test
        if isinstance(test, list):
            head, rest = test[0], test[1:]
            if head == "CMD-SHELL":
                command, args = "/bin/sh", ["-c", " ".join(rest)]
            elif head == "CMD":
                if not rest:
                    self.warnings.append(f"Service '{name}' health check has an empty CMD and was skipped")
                    return None
                command, args = rest[0], rest[1:]
            else:
                command, args = head, rest
        else:
            command, args = "/bin/sh", ["-c", test]

        check = Check(
            type="script",
            command=command,
            args=args,
            task=name,
            interval=healthcheck.interval or "30s",
            timeout=healthcheck.timeout or "5s",
        )
        if healthcheck.retries:
            check.check_restart = CheckRestart(limit=healthcheck.retries, grace=healthcheck.start_period)
        return check

    def _convert_configs_and_secrets(self, name: str, service: ComposeService, document: Dict[str, Any]) -> List[Template]:
        """
        Renders configs and secrets as task templates.

        Inline config content is embedded; external configs and all secrets
        become Vault lookups keyed by their source name.
        """
        templates: List[Template] = []

        configs = document.get("configs") if isinstance(document.get("configs"), dict) else {}
        for reference in service.configs:
            if reference.source not in configs:
                continue
            entry = ComposeFileEntry.model_validate(configs[reference.source] or {})
            if entry.content:
                body = entry.content
            elif entry.external:
                body = SECRET_TEMPLATE.format(name=entry.name or reference.source)
            else:
                body = f"# Config: {reference.source}"
                self.warnings.append(
                    f"Service '{name}' config '{reference.source}' is read from '{entry.file}' - "
                    f"its content must be supplied to the Nomad template"
                )
            templates.append(
                Template(
                    destination=f"local/{(reference.target or reference.source).lstrip('/')}",
                    embedded_tmpl=body,
                    change_mode="restart",
                )
            )

        for reference in service.secrets:
            templates.append(
                Template(
                    destination=f"secrets/{(reference.target or reference.source).lstrip('/')}",
                    embedded_tmpl=SECRET_TEMPLATE.format(name=reference.source),
                    change_mode="restart",
                )
            )

        return templates

    def _convert_restart_policy(self, service: ComposeService) -> Restart:
        restart = Restart()

        policy = service.restart
        if policy == "always":
            restart.attempts = 0
        elif policy and policy.startswith("on-failure"):
            restart.mode = "fail"
            _, _, limit = policy.partition(":")
            if limit.isdigit():
                restart.attempts = int(limit)
        elif policy in ("no", "unless-stopped"):
            restart.attempts = 0
            restart.mode = "fail"

        config = service.deploy.restart_policy if service.deploy else None
        if config:
            if config.condition == "none":
                restart.attempts = 0
                restart.mode = "fail"
            elif config.condition == "on-failure":
                restart.mode = "fail"
            if config.max_attempts is not None:
                restart.attempts = config.max_attempts
            if config.delay:
                restart.delay = config.delay
            if config.window:
                restart.interval = config.window

        return restart

    def _operator(self, operator: str) -> str:
        if operator == "==":
            return ConstraintOperator.EQUAL.value
        if operator in ConstraintOperator.values():
            return operator
        self.warnings.append(f"Unrecognized constraint operator '{operator}' - using '='")
        return ConstraintOperator.EQUAL.value

    def _placement_attribute(self, attribute: str) -> str:
        if attribute in SWARM_ATTRIBUTES:
            return SWARM_ATTRIBUTES[attribute]
        for prefix in SWARM_LABEL_PREFIXES:
            if attribute.startswith(prefix):
                return "${meta." + attribute[len(prefix):] + "}"
        return attribute

    def _convert_constraints(self, constraints: List[Any], placement: bool = False) -> List[Constraint]:
        """
        Parses ``"attribute operator value"`` strings (or mappings) into constraints.

        A bare attribute means ``attribute = true``. With ``placement`` set,
        Swarm node attributes are rewritten to their Nomad equivalents.
        """
        result = []
        for raw in constraints:
            if isinstance(raw, dict):
                attribute = str(raw.get("attribute", ""))
                operator = str(raw.get("operator", "="))
                value = None if raw.get("value") is None else str(raw["value"])
            else:
                text = str(raw).strip()
                if not text:
                    continue
                parts = text.split()
                compact = _COMPACT_CONSTRAINT.match(text)
                if len(parts) >= 3:
                    attribute, operator, value = parts[0], parts[1], " ".join(parts[2:])
                elif compact:
                    attribute, operator, value = compact.group("attribute", "operator", "value")
                else:
                    attribute, operator, value = text, "=", "true"

            if placement:
                attribute = self._placement_attribute(attribute)
            result.append(Constraint(attribute=attribute, operator=self._operator(operator), value=value))
        return result


def convert(document: Any, options: Optional[Union[ConversionOptions, Dict[str, Any]]] = None) -> ConversionResult:
    """
    Converts a parsed Compose document into a Nomad job.

    :param document: The generic document tree.
    :param options: Conversion options.
    :return: The conversion result.
    """
    return ComposeToNomadConverter(options).convert(document)


def convert_compose(
    content: str,
    options: Optional[Union[ConversionOptions, Dict[str, Any]]] = None,
    context: Optional[Dict[str, str]] = None,
    env_file: Optional[str] = None,
) -> ConversionResult:
    """
    Parses Compose YAML text and converts it.

    Parse failures are reported like any other fatal error: no job and an
    ``# ERROR:`` placeholder.

    :param content: The Compose YAML.
    :param options: Conversion options.
    :param context: Variables for interpolation, defaults to the process environment.
    :param env_file: Optional .env file adding variables to the context.
    :return: The conversion result.
    """
    parser = ComposeParser(context=context, env_file=env_file)
    try:
        document = parser.parse_from_string(content)
    except C2NError as e:
        return ConversionResult(hcl=f"# ERROR: {e}", errors=(str(e),), warnings=tuple(parser.warnings))

    result = convert(document, options)
    if parser.warnings:
        result = result.model_copy(update={"warnings": tuple(parser.warnings) + result.warnings})
    return result
