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
Unit tests for the Compose to Nomad converter.
"""
import pytest

from c2n import ConversionOptions, ResourceDefaults, convert, convert_compose
from c2n.CONVERTERS.to_nomad import ComposeToNomadConverter
from c2n.MODELS.nomad_job import Port

SIMPLE_COMPOSE = """
version: '3.8'
services:
  web:
    image: nginx:alpine
    ports: ["80:80"]
"""


def convert_services(services, document=None, **options):
    doc = {"version": "3.8", "services": services}
    doc.update(document or {})
    return convert(doc, ConversionOptions(**options))


def group_of(result, name="web"):
    return result.job.group[name]


def task_of(result, name="web"):
    return result.job.group[name].task[name]


class TestScenarios:
    """End to end conversions of small documents."""

    def test_simple_web_service(self):
        result = convert_compose(SIMPLE_COMPOSE, context={})

        assert result.errors == ()
        assert result.warnings == ()
        assert list(result.job.group) == ["web"]
        group = group_of(result)
        assert group.network.port == {"port_0": Port(static=80, to=80)}
        task = task_of(result)
        assert task.config["image"] == "nginx:alpine"
        assert (task.resources.cpu, task.resources.memory) == (100, 128)

    def test_job_defaults(self):
        result = convert_compose(SIMPLE_COMPOSE, context={})
        job = result.job
        assert job.id == "docker-compose"
        assert job.type == "service"
        assert job.datacenters == ["dc1"]
        assert job.priority == 50
        assert (job.update.stagger, job.update.max_parallel) == ("10s", 2)

    def test_missing_image_and_build(self):
        result = convert_services({"web": {"ports": ["80:80"]}})

        assert result.job is None
        assert len(result.errors) == 1
        assert "web" in result.errors[0]
        assert result.hcl.startswith("# ERROR:")
        assert not result.success

    def test_validation_can_be_skipped(self):
        result = convert_services({"web": {"ports": ["80:80"]}}, skip_validation=True)
        assert result.errors == ()
        assert "image" not in task_of(result).config

    def test_document_must_be_a_mapping(self):
        result = convert(["not", "a", "mapping"])
        assert result.job is None
        assert result.errors[0].startswith("Invalid YAML structure")
        assert result.hcl.startswith("# ERROR:")

    def test_options_are_applied(self):
        result = convert_services(
            {"web": {"image": "nginx"}},
            job_name="shop",
            namespace="prod",
            region="eu",
            datacenters=["eu-1", "eu-2"],
            priority=70,
        )
        job = result.job
        assert (job.id, job.name, job.namespace, job.region, job.priority) == ("shop", "shop", "prod", "eu", 70)
        assert job.datacenters == ["eu-1", "eu-2"]

    def test_options_as_mapping(self):
        result = ComposeToNomadConverter({"job_name": "mapped"}).convert(
            {"version": "3.8", "services": {"web": {"image": "nginx"}}}
        )
        assert result.job.id == "mapped"

    def test_document_name_wins(self):
        result = convert_services({"web": {"image": "nginx"}}, document={"name": "myapp"}, job_name="ignored")
        assert result.job.id == "myapp"

    def test_deterministic_output(self):
        services = {
            "web": {"image": "nginx", "ports": ["80:80"], "environment": {"B": "2", "A": "1"}},
            "db": {"image": "postgres", "volumes": ["/srv/db:/var/lib/postgresql/data"]},
        }
        first = convert_services(services)
        second = convert_services(services)
        assert first.hcl == second.hcl
        assert list(first.job.group) == ["web", "db"]


class TestPartialFailure:
    """A failing service must not take its siblings down."""

    def test_one_service_fails(self):
        services = {
            "web": {"image": "nginx"},
            "broken": {"image": "app", "ports": ["http:80"]},
            "db": {"image": "postgres"},
        }
        result = convert_services(services)

        assert list(result.job.group) == ["web", "db"]
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed to convert service 'broken'")
        assert "broken" not in result.hcl

    def test_collision_without_validation(self):
        services = {"web": {"image": "a"}, "WEB": {"image": "b"}}
        result = convert_services(services, skip_validation=True)
        assert list(result.job.group) == ["web"]
        assert result.errors == ("Failed to convert service 'WEB': name collides with service 'web'",)

    def test_non_mapping_service_without_validation(self):
        result = convert_services({"web": "nginx", "db": {"image": "postgres"}}, skip_validation=True)
        assert list(result.job.group) == ["db"]
        assert "Failed to convert service 'web'" in result.errors[0]


class TestPorts:
    """Tests for network and service discovery conversion."""

    def test_target_only(self):
        result = convert_services({"web": {"image": "app", "ports": ["8080"]}})
        assert group_of(result).network.port["port_0"] == Port(to=8080)

    def test_long_form(self):
        result = convert_services({"web": {"image": "app", "ports": [{"target": 80, "published": 8080}]}})
        assert group_of(result).network.port["port_0"] == Port(static=8080, to=80)

    def test_port_range_keeps_service(self):
        result = convert_services({"web": {"image": "app", "ports": ["9000-9001:9000-9001", "80:80"]}})
        assert result.errors == ()
        ports = group_of(result).network.port
        assert ports["port_0"] == Port(static=9000, to=9000)
        assert ports["port_1"] == Port(static=80, to=80)
        assert "Service 'web' port range '9000-9001:9000-9001' is mapped to its first port only" in result.warnings

    def test_ipv6_host_ip(self):
        result = convert_services({"web": {"image": "app", "ports": ["[::1]:8080:80"]}})
        assert result.errors == ()
        assert group_of(result).network.port["port_0"] == Port(static=8080, to=80)

    def test_expose(self):
        result = convert_services({"web": {"image": "app", "ports": ["80:80"], "expose": ["9000"]}})
        group = group_of(result)
        assert group.network.port["expose_0"] == Port(to=9000)
        assert [(s.name, s.port) for s in group.service] == [("web-0", "port_0"), ("web-1", "expose_0")]

    def test_no_ports(self):
        result = convert_services({"worker": {"image": "app"}})
        group = group_of(result, "worker")
        assert group.network is None
        assert len(group.service) == 1
        assert group.service[0].name == "worker"
        assert group.service[0].port is None
        assert group.service[0].tags == ["docker-compose"]

    def test_network_mode_option(self):
        result = convert_services({"web": {"image": "app", "ports": ["80:80"]}}, network_mode="host")
        assert group_of(result).network.mode == "host"
        assert task_of(result).config["network_mode"] == "host"


class TestResources:
    """Tests for CPU and memory conversion."""

    def test_limits(self):
        deploy = {"resources": {"limits": {"cpus": "0.5", "memory": "512M"}}}
        resources = task_of(convert_services({"web": {"image": "app", "deploy": deploy}})).resources
        assert (resources.cpu, resources.memory) == (500, 512)

    def test_reservations_raise_limits(self):
        deploy = {
            "resources": {
                "limits": {"cpus": 0.25, "memory": "256M"},
                "reservations": {"cpus": "1", "memory": "1G"},
            }
        }
        resources = task_of(convert_services({"web": {"image": "app", "deploy": deploy}})).resources
        assert (resources.cpu, resources.memory) == (1000, 1024)

    def test_legacy_fields(self):
        resources = task_of(convert_services({"web": {"image": "app", "cpus": 2, "mem_limit": 2147483648}})).resources
        assert (resources.cpu, resources.memory) == (2000, 2048)

    def test_legacy_fields_ignored_when_deploy_sets_them(self):
        service = {
            "image": "app",
            "cpus": 2,
            "mem_limit": "1g",
            "deploy": {"resources": {"limits": {"cpus": "0.5", "memory": "64m"}}},
        }
        resources = task_of(convert_services({"web": service})).resources
        assert (resources.cpu, resources.memory) == (500, 64)

    def test_custom_defaults(self):
        result = convert_services({"web": {"image": "app"}}, resource_defaults=ResourceDefaults(cpu=250, memory=300))
        assert (task_of(result).resources.cpu, task_of(result).resources.memory) == (250, 300)

    def test_unparseable_memory_falls_back(self):
        deploy = {"resources": {"reservations": {"memory": "plenty"}}}
        result = convert_services({"web": {"image": "app", "deploy": deploy}})
        assert task_of(result).resources.memory == 128
        assert any("unable to parse memory value: plenty" in w for w in result.warnings)


class TestDockerConfig:
    """Tests for the docker driver config block."""

    def test_command_list(self):
        config = task_of(convert_services({"web": {"image": "app", "command": ["python", "app.py", "--debug"]}})).config
        assert config["command"] == "python"
        assert config["args"] == ["app.py", "--debug"]

    def test_command_string(self):
        config = task_of(convert_services({"web": {"image": "app", "command": "npm start"}})).config
        assert config["command"] == "npm start"
        assert "args" not in config

    def test_entrypoint(self):
        config = task_of(convert_services({"web": {"image": "app", "entrypoint": "/entry.sh"}})).config
        assert config["entrypoint"] == ["/entry.sh"]

    def test_straight_through_fields(self):
        service = {
            "image": "app",
            "working_dir": "/app",
            "user": "1000:1000",
            "hostname": "web01",
            "privileged": True,
            "read_only": True,
            "security_opt": ["no-new-privileges:true"],
            "cap_add": ["NET_ADMIN"],
            "dns": ["8.8.8.8"],
            "dns_search": "example.com",
            "extra_hosts": ["db:10.0.0.2"],
        }
        config = task_of(convert_services({"web": service})).config
        assert config["work_dir"] == "/app"
        assert config["user"] == "1000:1000"
        assert config["hostname"] == "web01"
        assert config["privileged"] is True
        assert config["readonly_rootfs"] is True
        assert config["security_opt"] == ["no-new-privileges:true"]
        assert config["cap_add"] == ["NET_ADMIN"]
        assert config["cap_drop"] == []
        assert config["dns_servers"] == ["8.8.8.8"]
        assert config["dns_search_domains"] == ["example.com"]
        assert config["extra_hosts"] == ["db:10.0.0.2"]

    def test_labels(self):
        services = {"web": {"image": "app", "labels": ["com.example.tier=web", "team=core"]}}
        assert task_of(convert_services(services)).config["labels"] == {"com.example.tier": "web", "team": "core"}
        assert "labels" not in task_of(convert_services(services, preserve_labels=False)).config

    def test_deploy_labels(self):
        services = {
            "web": {
                "image": "app",
                "labels": {"team": "core"},
                "deploy": {"labels": ["team=platform", "traefik.enable=true"]},
            }
        }
        labels = task_of(convert_services(services)).config["labels"]
        assert labels == {"team": "core", "traefik.enable": "true"}
        assert "labels" not in task_of(convert_services(services, preserve_labels=False)).config

    def test_devices(self):
        services = {"web": {"image": "app", "devices": ["/dev/fuse", {"source": "/dev/sda", "target": "/dev/xvda"}]}}
        assert task_of(convert_services(services)).config["devices"] == [
            {"host_path": "/dev/fuse", "container_path": "/dev/fuse", "cgroup_permissions": "rwm"},
            {"host_path": "/dev/sda", "container_path": "/dev/xvda", "cgroup_permissions": "rwm"},
        ]

    def test_logging(self):
        services = {"web": {"image": "app", "logging": {"options": {"max-size": "10m"}}}}
        logging_config = task_of(convert_services(services)).config["logging"]
        assert logging_config == {"type": "json-file", "config": {"max-size": "10m"}}

    def test_runtime_options(self):
        service = {
            "image": "app",
            "ulimits": {"nofile": {"soft": 1024, "hard": 2048}, "nproc": 65535},
            "sysctls": ["net.core.somaxconn=1024"],
            "shm_size": "64m",
            "init": True,
            "ipc": "host",
            "tmpfs": ["/run:size=64m", "/tmp"],
        }
        config = task_of(convert_services({"web": service})).config
        assert config["ulimit"] == {"nofile": "1024:2048", "nproc": "65535"}
        assert config["sysctl"] == {"net.core.somaxconn": "1024"}
        assert config["shm_size"] == 64 * 1024 * 1024
        assert config["init"] is True
        assert config["ipc_mode"] == "host"
        assert config["mount"] == [{"type": "tmpfs", "target": "/run"}, {"type": "tmpfs", "target": "/tmp"}]

    def test_environment(self):
        result = convert_services({"web": {"image": "app", "environment": ["A=1", "B=x=y", "A=2"]}})
        assert task_of(result).env == {"A": "2", "B": "x=y"}

    def test_stop_settings(self):
        task = task_of(convert_services({"web": {"image": "app", "stop_grace_period": "30s", "stop_signal": "SIGQUIT"}}))
        assert task.kill_timeout == "30s"
        assert task.kill_signal == "SIGQUIT"


class TestVolumes:
    """Tests for group volumes and task mounts."""

    def test_host_and_named_volumes(self):
        services = {"db": {"image": "postgres", "volumes": ["/srv/db:/var/lib/data:ro", "cache:/cache"]}}
        result = convert_services(services, document={"volumes": {"cache": {}}})
        group = group_of(result, "db")
        task = task_of(result, "db")

        assert group.volume["volume_0"].type == "host"
        assert group.volume["volume_0"].source == "/srv/db"
        assert group.volume["volume_0"].read_only is True
        assert group.volume["volume_1"].type == "csi"
        assert task.volume_mount["mount_0"].volume == "volume_0"
        assert task.volume_mount["mount_0"].destination == "/var/lib/data"
        assert task.volume_mount["mount_0"].read_only is True
        assert task.volume_mount["mount_1"].destination == "/cache"

    def test_long_form_read_only(self):
        volume = {"type": "bind", "source": "/etc/app", "target": "/etc/app", "read_only": True}
        result = convert_services({"web": {"image": "app", "volumes": [volume]}})
        assert group_of(result).volume["volume_0"].read_only is True

    def test_anonymous_volume_skipped(self):
        result = convert_services({"web": {"image": "app", "volumes": ["/var/cache", "/srv:/srv"]}})
        assert list(group_of(result).volume) == ["volume_1"]
        assert list(task_of(result).volume_mount) == ["mount_1"]
        assert any("anonymous volume '/var/cache'" in w for w in result.warnings)

    def test_relative_bind_mount_warns(self):
        result = convert_services({"web": {"image": "app", "volumes": ["./conf:/etc/conf"]}})
        assert group_of(result).volume["volume_0"].type == "csi"
        assert any("not an absolute path" in w for w in result.warnings)


class TestHealthChecks:
    """Tests for health check conversion."""

    def check_for(self, healthcheck):
        services = {"web": {"image": "app", "ports": ["80:80"], "healthcheck": healthcheck}}
        checks = group_of(convert_services(services)).service[0].check
        return checks[0] if checks else None

    def test_cmd(self):
        check = self.check_for({"test": ["CMD", "curl", "-f", "http://localhost"]})
        assert check.type == "script"
        assert check.command == "curl"
        assert check.args == ["-f", "http://localhost"]
        assert (check.interval, check.timeout) == ("30s", "5s")
        assert check.task == "web"

    def test_cmd_shell(self):
        check = self.check_for({"test": ["CMD-SHELL", "curl -f localhost || exit 1"], "interval": "10s", "timeout": "2s"})
        assert check.command == "/bin/sh"
        assert check.args == ["-c", "curl -f localhost || exit 1"]
        assert (check.interval, check.timeout) == ("10s", "2s")

    def test_string_form(self):
        check = self.check_for({"test": "pg_isready"})
        assert (check.command, check.args) == ("/bin/sh", ["-c", "pg_isready"])

    def test_disabled(self):
        assert self.check_for({"test": ["CMD", "true"], "disable": True}) is None
        assert self.check_for({"test": ["NONE"]}) is None

    def test_retries(self):
        check = self.check_for({"test": ["CMD", "true"], "retries": 3, "start_period": "40s"})
        assert check.check_restart.limit == 3
        assert check.check_restart.grace == "40s"


class TestTemplates:
    """Tests for configs and secrets."""

    def test_configs_and_secrets(self):
        document = {
            "configs": {
                "site": {"content": "server {}"},
                "remote": {"external": True},
                "fromfile": {"file": "./nginx.conf"},
            },
            "secrets": {"db_password": {"file": "./pw.txt"}},
        }
        services = {
            "web": {
                "image": "nginx",
                "configs": [{"source": "site", "target": "/etc/nginx/conf.d/site.conf"}, "remote", "fromfile"],
                "secrets": ["db_password"],
            }
        }
        result = convert_services(services, document=document)
        templates = task_of(result).template

        assert [t.destination for t in templates] == [
            "local/etc/nginx/conf.d/site.conf",
            "local/remote",
            "local/fromfile",
            "secrets/db_password",
        ]
        assert templates[0].embedded_tmpl == "server {}"
        assert 'secret "secret/data/remote"' in templates[1].embedded_tmpl
        assert templates[2].embedded_tmpl == "# Config: fromfile"
        assert templates[3].embedded_tmpl == '{{ with secret "secret/data/db_password" }}{{ .Data.data.value }}{{ end }}'
        assert all(t.change_mode == "restart" for t in templates)
        assert any("config 'fromfile'" in w for w in result.warnings)


class TestRestart:
    """Tests for restart policy conversion."""

    def restart_for(self, **service):
        return group_of(convert_services({"web": {"image": "app", **service}})).restart

    def test_no_policy(self):
        assert self.restart_for() is None

    def test_unless_stopped(self):
        restart = self.restart_for(restart="unless-stopped")
        assert (restart.attempts, restart.mode) == (0, "fail")

    def test_no(self):
        restart = self.restart_for(restart=False)
        assert (restart.attempts, restart.mode) == (0, "fail")

    def test_on_failure(self):
        restart = self.restart_for(restart="on-failure")
        assert (restart.attempts, restart.delay, restart.interval, restart.mode) == (3, "15s", "5m", "fail")

    def test_on_failure_with_limit(self):
        assert self.restart_for(restart="on-failure:5").attempts == 5

    def test_always(self):
        restart = self.restart_for(restart="always")
        assert (restart.attempts, restart.mode) == (0, "delay")

    def test_deploy_policy_overrides(self):
        policy = {"condition": "on-failure", "max_attempts": 7, "delay": "10s", "window": "2m"}
        restart = self.restart_for(restart="always", deploy={"restart_policy": policy})
        assert (restart.attempts, restart.delay, restart.interval, restart.mode) == (7, "10s", "2m", "fail")

    def test_deploy_condition_none(self):
        restart = self.restart_for(deploy={"restart_policy": {"condition": "none"}})
        assert (restart.attempts, restart.mode) == (0, "fail")


class TestScheduling:
    """Tests for replicas, constraints, spreads and updates."""

    def test_replicas(self):
        result = convert_services({"web": {"image": "app", "deploy": {"replicas": 3}}})
        assert group_of(result).count == 3

    def test_placement_constraints(self):
        constraints = [
            "node.role == manager",
            "node.labels.zone == eu",
            "node.hostname != h1",
            "engine.labels.ssd",
            "node.platform.os==linux",
        ]
        result = convert_services({"web": {"image": "app", "deploy": {"placement": {"constraints": constraints}}}})
        assert [(c.attribute, c.operator, c.value) for c in task_of(result).constraint] == [
            ("node.role", "=", "manager"),
            ("${meta.zone}", "=", "eu"),
            ("${node.unique.name}", "!=", "h1"),
            ("${meta.ssd}", "=", "true"),
            ("${attr.kernel.name}", "=", "linux"),
        ]
        assert result.warnings == ()

    def test_unknown_operator(self):
        deploy = {"placement": {"constraints": ["node.role ~= manager"]}}
        result = convert_services({"web": {"image": "app", "deploy": deploy}})
        assert task_of(result).constraint[0].operator == "="
        assert any("Unrecognized constraint operator '~='" in w for w in result.warnings)

    def test_job_extension(self):
        extension = {
            "constraints": ["${attr.kernel.name} = linux", "${attr.cpu.arch} regexp amd64|arm64"],
            "affinities": [{"attribute": "${node.datacenter}", "value": "us-west1", "weight": 100}],
            "spreads": [{"attribute": "${node.datacenter}", "target": {"dc1": 70, "dc2": 30}}],
        }
        job = convert_services({"web": {"image": "app"}}, document={"x-nomad": extension}).job
        assert [(c.attribute, c.operator, c.value) for c in job.constraint] == [
            ("${attr.kernel.name}", "=", "linux"),
            ("${attr.cpu.arch}", "regexp", "amd64|arm64"),
        ]
        assert job.affinity[0].weight == 100
        assert [(t.value, t.percent) for t in job.spread[0].target] == [("dc1", 70), ("dc2", 30)]

    def test_bad_extension_is_an_error(self):
        result = convert_services({"web": {"image": "app"}}, document={"x-nomad": {"affinities": ["oops"]}})
        assert list(result.job.group) == ["web"]
        assert result.errors[0].startswith("Failed to convert 'x-nomad'")

    def test_update_and_preferences(self):
        deploy = {
            "update_config": {"parallelism": 2, "delay": "10s", "failure_action": "rollback"},
            "placement": {"preferences": [{"spread": "node.labels.zone"}]},
        }
        group = group_of(convert_services({"web": {"image": "app", "deploy": deploy}}))
        assert (group.update.max_parallel, group.update.stagger, group.update.auto_revert) == (2, "10s", True)
        assert group.spread[0].attribute == "${meta.zone}"


class TestWarnings:
    """Tests for lossy mappings."""

    @pytest.mark.parametrize("service, fragment", [
        ({"image": "app", "depends_on": ["db"]}, "Service dependencies for 'web'"),
        ({"image": "app", "build": "."}, "Nomad cannot build images"),
        ({"build": "."}, "without 'image'"),
        ({"image": "app", "container_name": "web1"}, "container_name"),
        ({"image": "app", "links": ["db"]}, "links"),
        ({"image": "app", "env_file": ".env"}, "env_file"),
        ({"image": "app", "deploy": {"mode": "global"}}, "system job"),
    ])
    def test_lossy_mapping_warns(self, service, fragment):
        result = convert_services({"web": service, "db": {"image": "postgres"}})
        assert result.errors == ()
        assert any(fragment in w for w in result.warnings)


def test_convert_compose_parse_error():
    result = convert_compose("services: [", context={})
    assert result.job is None
    assert result.hcl.startswith("# ERROR: Failed to parse YAML")
    assert len(result.errors) == 1


def test_convert_compose_reports_unset_variables():
    result = convert_compose("version: '3.8'\nservices:\n  web:\n    image: \"nginx:${TAG}\"\n", context={})
    assert task_of(result).config["image"] == "nginx:"
    assert result.warnings == ("Variable 'TAG' is not set. Defaulting to a blank string.",)


def test_convert_compose_substitutes_after_parsing():
    compose = "version: '3.8'\nservices:\n  web:\n    image: nginx\n    environment:\n      - PASSWORD=${PASSWORD}\n"
    result = convert_compose(compose, context={"PASSWORD": "abc #def: x"})
    assert task_of(result).env == {"PASSWORD": "abc #def: x"}


def test_convert_compose_required_variable():
    result = convert_compose("services:\n  web:\n    image: app:${TAG:?set TAG}\n", context={})
    assert result.job is None
    assert result.errors == ("required variable TAG is missing a value: set TAG",)
