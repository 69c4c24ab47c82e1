"""
Command Line Interface for C2N.
"""
import logging

import click

from .. import SUPPORTED_COMPOSE_VERSIONS, SUPPORTED_NOMAD_VERSIONS, __version__
from ..CLIENT.deployment_service import DeploymentService
from ..CLIENT.nomad_client import NomadClient, NomadClientConfig
from ..CONVERTERS.to_nomad import convert_compose
from ..errors import C2NError
from ..GENERATORS.hcl_generator import generate_json
from ..MODELS.conversion import ConversionOptions, ResourceDefaults
from ..PARSERS.compose_parser import ComposeParser
from ..VALIDATION.compose_validator import validate_compose_file

_CONVERSION_OPTIONS = [
    click.option('--job-name', default='docker-compose', show_default=True,
                 help='Job name when the compose file has no top-level name'),
    click.option('--namespace', default='default', show_default=True, help='Nomad namespace'),
    click.option('--region', default='global', show_default=True, help='Nomad region'),
    click.option('--datacenters', default='dc1', show_default=True, help='Comma separated datacenters'),
    click.option('--priority', type=click.IntRange(1, 100), default=50, show_default=True, help='Job priority'),
    click.option('--skip-validation', is_flag=True, help='Convert without validating first'),
    click.option('--no-comments', is_flag=True, help='Leave explanatory comments out of the HCL'),
    click.option('--no-preserve-labels', is_flag=True, help='Drop service labels from the docker config'),
    click.option('--network-mode', type=click.Choice(['bridge', 'host', 'none', 'cni']), default='bridge',
                 show_default=True, help='Group network mode'),
    click.option('--cpu', type=click.IntRange(min=1), default=100, show_default=True,
                 help='Default CPU in MHz for services without limits'),
    click.option('--memory', type=click.IntRange(min=1), default=128, show_default=True,
                 help='Default memory in MB for services without limits'),
    click.option('--env-file', type=click.Path(exists=True, dir_okay=False), help='.env file used for interpolation'),
]


def conversion_options(func):
    """Adds the shared conversion flags to a command."""
    for option in reversed(_CONVERSION_OPTIONS):
        func = option(func)
    return func


def _build_options(job_name, namespace, region, datacenters, priority, skip_validation,
                   no_comments, no_preserve_labels, network_mode, cpu, memory) -> ConversionOptions:
    return ConversionOptions(
        job_name=job_name,
        namespace=namespace,
        region=region,
        datacenters=[dc.strip() for dc in datacenters.split(',') if dc.strip()],
        priority=priority,
        skip_validation=skip_validation,
        include_comments=not no_comments,
        preserve_labels=not no_preserve_labels,
        network_mode=network_mode,
        resource_defaults=ResourceDefaults(cpu=cpu, memory=memory),
    )


def _report(warnings, errors):
    for warning in warnings:
        click.echo(f"Warning: {warning}", err=True)
    for error in errors:
        click.echo(f"Error: {error}", err=True)


def _write(path, content):
    with open(path, 'w') as f:
        f.write(content)
    click.echo(f"Wrote {path}", err=True)


@click.group()
@click.version_option(__version__, prog_name='c2n')
@click.option('--address', envvar='NOMAD_ADDR', default='http://localhost:4646', show_default=True,
              help='Nomad HTTP API address')
@click.option('--token', envvar='NOMAD_TOKEN', help='Nomad ACL token')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, address, token, verbose):
    """
    C2N - Docker Compose to Nomad converter.

    Translates Compose files into Nomad jobs and deploys them.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    ctx.ensure_object(dict)
    ctx.obj['client_config'] = NomadClientConfig(address=address, token=token)


def _client(ctx, **overrides) -> NomadClient:
    config = ctx.obj['client_config'].model_copy(update=overrides)
    return NomadClient(config)


@cli.command()
@click.argument('input_file', type=click.File('r'))
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the job to a file')
@click.option('--format', 'output_format', type=click.Choice(['hcl', 'json']), default='hcl', show_default=True)
@conversion_options
@click.pass_context
def convert(ctx, input_file, output, output_format, env_file, **kwargs):
    """Convert a compose file to a Nomad job."""
    options = _build_options(**kwargs)
    result = convert_compose(input_file.read(), options, env_file=env_file)

    content = result.hcl
    if output_format == 'json' and result.job is not None:
        content = generate_json(result.job)

    if output:
        if result.job is not None:
            _write(output, content)
    else:
        click.echo(content)

    _report(result.warnings, result.errors)
    if result.errors:
        ctx.exit(1)


@cli.command()
@click.argument('input_file', type=click.File('r'))
@click.option('--env-file', type=click.Path(exists=True, dir_okay=False), help='.env file used for interpolation')
@click.pass_context
def validate(ctx, input_file, env_file):
    """Validate a compose file without converting it."""
    parser = ComposeParser(env_file=env_file)
    try:
        document = parser.parse_from_string(input_file.read())
    except C2NError as e:
        raise click.ClickException(str(e))

    result = validate_compose_file(document)
    _report(parser.warnings + list(result.warnings), result.errors)
    if not result.is_valid:
        ctx.exit(1)
    click.echo("Compose file is valid.")


@cli.command()
@click.argument('input_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--dry-run', is_flag=True, help='Convert only, do not submit')
@click.option('--wait', is_flag=True, help='Wait until the job is running')
@click.option('--timeout', type=click.FloatRange(min=0), default=300, show_default=True,
              help='Seconds to wait with --wait')
@click.option('--force', is_flag=True, help='Submit even when some services failed to convert')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Also write the job HCL to a file')
@conversion_options
@click.pass_context
def deploy(ctx, input_file, dry_run, wait, timeout, force, output, env_file, **kwargs):
    """Convert a compose file and submit it to Nomad."""
    options = _build_options(**kwargs)
    client = _client(ctx, region=options.region, namespace=options.namespace)
    service = DeploymentService(client, options, env_file=env_file)

    result = service.deploy_compose_file(input_file, dry_run=dry_run, wait=wait, timeout=timeout, force=force)

    if output and result.hcl and not result.hcl.startswith('# ERROR:'):
        _write(output, result.hcl)
    elif dry_run and result.success:
        click.echo(result.hcl)

    _report(result.warnings, result.errors)
    click.echo(result.message, err=not result.success)
    if result.job_url:
        click.echo(f"Job URL: {result.job_url}")
    if not result.success:
        ctx.exit(1)


@cli.command()
@click.argument('job_id')
@click.option('--namespace', envvar='NOMAD_NAMESPACE', default='default', show_default=True)
@click.pass_context
def status(ctx, job_id, namespace):
    """Show the status of a deployed job."""
    service = DeploymentService(_client(ctx, namespace=namespace))
    try:
        state = service.get_deployment_status(job_id)
    except C2NError as e:
        raise click.ClickException(str(e))

    job = state['job'] or {}
    click.echo(f"Job:    {job.get('ID', job_id)}")
    click.echo(f"Status: {job.get('Status', 'unknown')}")
    click.echo(f"Type:   {job.get('Type', 'unknown')}")
    click.echo("")
    click.echo(f"{'ALLOCATION':10} {'GROUP':20} {'DESIRED':10} {'STATUS':10}")
    click.echo("-" * 53)
    for alloc in state['allocations']:
        click.echo(
            f"{alloc.get('ID', '')[:8]:10} {alloc.get('TaskGroup', ''):20} "
            f"{alloc.get('DesiredStatus', ''):10} {alloc.get('ClientStatus', ''):10}"
        )
    click.echo("")
    click.echo(f"Evaluations: {len(state['evaluations'])}")


@cli.command()
@click.argument('job_id')
@click.option('--purge', is_flag=True, help='Remove the job from Nomad entirely')
@click.option('--namespace', envvar='NOMAD_NAMESPACE', default='default', show_default=True)
@click.pass_context
def stop(ctx, job_id, purge, namespace):
    """Stop a deployed job."""
    service = DeploymentService(_client(ctx, namespace=namespace))
    try:
        service.stop_job(job_id, purge=purge)
    except C2NError as e:
        raise click.ClickException(str(e))
    click.echo(f"Job {job_id} {'purged' if purge else 'stopped'}.")


@cli.command()
@click.pass_context
def info(ctx):
    """Show version information and cluster connectivity."""
    client = _client(ctx)
    click.echo(f"c2n {__version__}")
    click.echo(f"Compose versions: {', '.join(SUPPORTED_COMPOSE_VERSIONS)}")
    click.echo(f"Nomad versions:   {', '.join(SUPPORTED_NOMAD_VERSIONS)}")
    click.echo(f"Nomad address:    {client.address}")

    if not client.health_check():
        click.echo("Nomad cluster is not reachable.", err=True)
        ctx.exit(1)

    try:
        cluster = client.get_status()
    except C2NError as e:
        raise click.ClickException(str(e))
    click.echo(f"Leader:           {cluster['leader']}")
    click.echo(f"Servers:          {', '.join(cluster['servers'])}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
