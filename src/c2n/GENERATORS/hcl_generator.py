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
Generators for Nomad job files in HCL and JSON.

The job model is first lowered to a tree of immutable HCL blocks whose
attribute values are already rendered, then the tree is printed by a
recursive Jinja2 macro with two-space indentation. Output is fully
determined by the job, so equal jobs always give identical text.
"""
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from jinja2 import Template

from ..MODELS.nomad_job import (
    Affinity,
    Check,
    Constraint,
    Job,
    Network,
    Service,
    Spread,
    Task,
    TaskGroup,
)

HCL_TEMPLATE = """
{% macro render(node, depth) %}
{% set pad = "  " * depth %}
{% for comment in node.comments %}
{{ pad }}# {{ comment }}
{% endfor %}
{{ pad }}{{ node.header }} {
{% for attribute in node.attributes %}
{{ pad }}  {{ attribute.key }} = {{ attribute.value }}
{% endfor %}
{% for child in node.children %}
{{ render(child, depth + 1) }}
{%- endfor %}
{{ pad }}}
{% endmacro %}
{{ render(root, 0) }}
"""

HEADER_COMMENT = "Nomad job generated from Docker Compose by c2n"
UPDATE_COMMENT = "Specify this job to have rolling updates, two-at-a-time, with 10 second intervals."

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")

_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t"}


def quote(text: str, literal: bool = False) -> str:
    """
    Renders a string as a double-quoted HCL string.

    :param text: The raw string.
    :param literal: Also escape ``${`` and ``%{`` so HCL does not
        interpolate them (used for template bodies).
    :return: The quoted string.
    """
    escaped = "".join(_ESCAPES.get(char, char) for char in text)
    if literal:
        escaped = escaped.replace("${", "$${").replace("%{", "%%{")
    return f'"{escaped}"'


def render_key(key: Any) -> str:
    key = str(key)
    return key if IDENTIFIER.match(key) else quote(key)


def render_value(value: Any, literal: bool = False) -> str:
    """
    Renders a Python value as an HCL expression.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        if not value:
            return "{}"
        items = ", ".join(f"{render_key(k)} = {render_value(v, literal)}" for k, v in value.items())
        return "{ " + items + " }"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(render_value(item, literal) for item in value) + "]"
    return quote(str(value), literal)


@dataclass(frozen=True)
class HCLAttribute:
    key: str
    value: str


@dataclass(frozen=True)
class HCLBlock:
    """
    One HCL block: ``type "label" ... { attributes children }``.
    """
    type: str
    labels: Tuple[str, ...] = ()
    attributes: Tuple[HCLAttribute, ...] = ()
    children: Tuple["HCLBlock", ...] = ()
    comments: Tuple[str, ...] = ()

    @property
    def header(self) -> str:
        return " ".join([self.type] + [quote(label) for label in self.labels])


def _is_block_body(mapping: Dict[Any, Any]) -> bool:
    return all(isinstance(key, str) and IDENTIFIER.match(key) for key in mapping)


def block(
    block_type: str,
    *labels: str,
    attributes: Optional[Dict[str, Any]] = None,
    children: Iterable[HCLBlock] = (),
    comments: Iterable[str] = (),
    literal: Iterable[str] = (),
) -> HCLBlock:
    """
    Builds a block from a mapping of attribute values.

    ``None`` values and empty mappings are left out. Mappings whose keys
    are all identifiers become nested blocks, other mappings stay inline
    objects. Lists of mappings become repeated nested blocks.

    :param block_type: The block type, e.g. ``task``.
    :param labels: The block labels, quoted on output.
    :param attributes: The attribute values, in output order.
    :param children: Additional nested blocks, after those derived from attributes.
    :param comments: Comment lines printed above the block.
    :param literal: Attribute names whose strings must not be interpolated by HCL.
    :return: The block.
    """
    literal = set(literal)
    rendered = []
    nested = []
    for key, value in (attributes or {}).items():
        if value is None:
            continue
        if isinstance(value, dict):
            if not value:
                continue
            if _is_block_body(value):
                nested.append(block(key, attributes=value))
                continue
        elif isinstance(value, list) and value and all(isinstance(item, dict) for item in value):
            nested.extend(block(key, attributes=item) for item in value)
            continue
        rendered.append(HCLAttribute(render_key(key), render_value(value, key in literal)))

    return HCLBlock(
        type=block_type,
        labels=tuple(labels),
        attributes=tuple(rendered),
        children=tuple(nested) + tuple(children),
        comments=tuple(comments),
    )


def _constraint_block(constraint: Constraint) -> HCLBlock:
    return block("constraint", attributes=constraint.model_dump())


def _affinity_block(affinity: Affinity) -> HCLBlock:
    return block("affinity", attributes=affinity.model_dump())


def _spread_block(spread: Spread) -> HCLBlock:
    targets = [block("target", target.value, attributes={"percent": target.percent}) for target in spread.target]
    return block("spread", attributes={"attribute": spread.attribute, "weight": spread.weight}, children=targets)


def _network_block(network: Network) -> HCLBlock:
    ports = [block("port", label, attributes=port.model_dump()) for label, port in network.port.items()]
    return block("network", attributes={"mode": network.mode}, children=ports)


def _check_block(check: Check) -> HCLBlock:
    children = []
    if check.check_restart:
        children.append(block("check_restart", attributes=check.check_restart.model_dump()))
    return block("check", attributes=check.model_dump(exclude={"check_restart"}), children=children)


def _service_block(service: Service) -> HCLBlock:
    return block(
        "service",
        attributes={"name": service.name, "port": service.port, "tags": service.tags},
        children=[_check_block(check) for check in service.check],
    )


def _task_block(name: str, task: Task) -> HCLBlock:
    children = []
    if task.resources:
        children.append(block("resources", attributes=task.resources.model_dump()))
    children.extend(block("volume_mount", attributes=mount.model_dump()) for mount in task.volume_mount.values())
    children.extend(
        block(
            "template",
            attributes={
                "destination": template.destination,
                "data": template.embedded_tmpl,
                "change_mode": template.change_mode,
            },
            literal=("data",),
        )
        for template in task.template
    )
    children.extend(_constraint_block(constraint) for constraint in task.constraint)

    return block(
        "task",
        name,
        attributes={
            "driver": task.driver,
            "kill_timeout": task.kill_timeout,
            "kill_signal": task.kill_signal,
            "config": task.config,
            "env": task.env,
        },
        children=children,
    )


def _group_block(name: str, group: TaskGroup, include_comments: bool) -> HCLBlock:
    children = []
    if group.network:
        children.append(_network_block(group.network))
    children.extend(block("volume", label, attributes=volume.model_dump()) for label, volume in group.volume.items())
    children.extend(_service_block(service) for service in group.service)
    if group.restart:
        children.append(block("restart", attributes=group.restart.model_dump()))
    if group.update:
        children.append(block("update", attributes=group.update.model_dump()))
    children.extend(_spread_block(spread) for spread in group.spread)
    children.extend(_task_block(task_name, task) for task_name, task in group.task.items())

    return block(
        "group",
        name,
        attributes={"count": group.count},
        children=children,
        comments=[f"Service: {name}"] if include_comments else [],
    )


def build_job_block(job: Job, include_comments: bool = True) -> HCLBlock:
    """
    Lowers a job model to its HCL block tree.

    :param job: The job to lower.
    :param include_comments: Whether to add explanatory comments.
    :return: The root ``job`` block.
    """
    children = [_constraint_block(constraint) for constraint in job.constraint]
    children.extend(_affinity_block(affinity) for affinity in job.affinity)
    children.extend(_spread_block(spread) for spread in job.spread)
    if job.update:
        children.append(
            block(
                "update",
                attributes=job.update.model_dump(),
                comments=[UPDATE_COMMENT] if include_comments else [],
            )
        )
    children.extend(_group_block(name, group, include_comments) for name, group in job.group.items())

    return block(
        "job",
        job.id,
        attributes={
            "region": job.region,
            "namespace": job.namespace,
            "datacenters": job.datacenters,
            "type": job.type,
            "priority": job.priority,
        },
        children=children,
        comments=[HEADER_COMMENT] if include_comments else [],
    )


_template = Template(HCL_TEMPLATE, trim_blocks=True, lstrip_blocks=True)


def generate_hcl(job: Job, include_comments: bool = True) -> str:
    """
    Renders a job as Nomad HCL.

    :param job: The job to render.
    :param include_comments: Whether to add explanatory comments.
    :return: The HCL text.
    """
    return _template.render(root=build_job_block(job, include_comments)).lstrip("\n")


def generate_json(job: Job) -> str:
    """
    Renders a job as a JSON document of the form ``{"job": {<id>: {...}}}``.
    """
    return json.dumps(job.to_document(), indent=2)
