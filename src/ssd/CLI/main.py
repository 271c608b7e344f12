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
Command Line Interface for SSD.
"""
import logging
import os
import sys

import click
import yaml

from .. import __version__
from ..CONVERTERS.to_config import ConfigScaffold
from ..MANAGERS.deployment_lock import DEFAULT_LOCK_TIMEOUT
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MANAGERS.provisioner import Provisioner, traefik_config
from ..MANAGERS.remote_client import RemoteClient
from ..MANAGERS.service_orchestrator import DeploymentOrchestrator, DeployOptions
from ..PARSERS.config_parser import DEFAULT_CONFIG_FILE, ConfigParser
from ..RUNNERS.dependency_resolver import resolve_order
from ..exceptions import ConfigError, SSDError


def _fail(message) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _root(ctx):
    if 'root' not in ctx.obj:
        ctx.obj['root'] = ctx.obj['parser'].parse(ctx.obj['file'])
    return ctx.obj['root']


def _service(ctx, name):
    root = _root(ctx)
    try:
        return ctx.obj['parser'].load_service(root, name)
    except ConfigError as e:
        if root.services:
            raise ConfigError(f"{e}\nAvailable services: {', '.join(root.list_services())}") from e
        raise


def _all_services(ctx):
    return ctx.obj['parser'].load_all(_root(ctx))


def _client(ctx, config):
    return RemoteClient(config, ctx.obj.get('executor'))


def _output():
    return click.get_text_stream('stdout')


@click.group()
@click.option('--file', '-f', default=DEFAULT_CONFIG_FILE, help='Config file path')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, file, verbose):
    """
    SSD - SSH Deploy.

    Builds and deploys Docker Compose services to a single server over SSH,
    with Traefik routing, canary rollouts and rollback.
    """
    ctx.ensure_object(dict)
    ctx.obj['file'] = file
    ctx.obj.setdefault('parser', ConfigParser())
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )


@cli.command()
def version():
    """Print the version."""
    click.echo(f"ssd version {__version__}")


@cli.command()
@click.option('--server', '-s', required=True, help='SSH host name')
@click.option('--stack', default=None, help='Stack path on the server')
@click.option('--service', default='app', help='Service name')
@click.option('--domain', default=None, help='Domain for Traefik routing')
@click.option('--port', type=int, default=0, help='Container port')
@click.option('--force', is_flag=True, help='Overwrite an existing ssd.yaml')
@click.pass_context
def init(ctx, server, stack, service, domain, port, force):
    """Create a starter ssd.yaml."""
    directory = os.path.dirname(ctx.obj['file']) or '.'
    try:
        path = ConfigScaffold(server, stack, service, domain, port).write(directory, force=force)
    except (ValueError, OSError) as e:
        _fail(e)
    click.echo(f"Created {path}")


@cli.command()
@click.argument('service', required=False)
@click.option('--build-only', is_flag=True, help='Build or pull the image without starting it')
@click.option('--no-regenerate', is_flag=True,
              help='Only bump the image tag instead of regenerating compose.yaml')
@click.option('--lock-timeout', type=float, default=DEFAULT_LOCK_TIMEOUT,
              help='Seconds to wait for another deployment of the stack')
@click.pass_context
def deploy(ctx, service, build_only, no_regenerate, lock_timeout):
    """Deploy one service, or every service when none is named."""
    try:
        if service is None:
            _deploy_all(ctx, lock_timeout)
            return

        cfg = _service(ctx, service)
        services = _all_services(ctx)
        options = DeployOptions(
            output=_output(),
            all_services=None if no_regenerate else services,
            dependencies={d: services[d] for d in cfg.depends_on if d in services},
            build_only=build_only,
            lock_timeout=lock_timeout,
        )
        click.echo(f"Deploying {cfg.name} to {cfg.server}...\n")
        DeploymentOrchestrator(cfg, _client(ctx, cfg), options).deploy()
    except SSDError as e:
        _fail(e)


def _deploy_all(ctx, lock_timeout):
    services = _all_services(ctx)
    if not services:
        raise ConfigError("no services defined in ssd.yaml")
    order = resolve_order(services)
    click.echo(f"Deploying all services: {', '.join(order)}\n")

    for name in order:
        cfg = services[name]
        click.echo(f"Building {name}...")
        options = DeployOptions(
            output=_output(),
            all_services=services,
            build_only=True,
            lock_timeout=lock_timeout,
        )
        DeploymentOrchestrator(cfg, _client(ctx, cfg), options).deploy()

    click.echo("\n==> Starting all services...")
    for name in order:
        cfg = services[name]
        click.echo(f"    {name}...")
        options = DeployOptions(lock_timeout=lock_timeout)
        DeploymentOrchestrator(cfg, _client(ctx, cfg), options).restart()

    click.echo("\nAll services deployed successfully!")


@cli.command()
@click.argument('service')
@click.pass_context
def restart(ctx, service):
    """Restart a service at its current version."""
    try:
        cfg = _service(ctx, service)
        click.echo(f"Restarting {cfg.name} on {cfg.server}...\n")
        DeploymentOrchestrator(cfg, _client(ctx, cfg), DeployOptions(output=_output())).restart()
    except SSDError as e:
        _fail(e)


@cli.command()
@click.argument('service')
@click.pass_context
def rollback(ctx, service):
    """Roll a service back to its previous version."""
    try:
        cfg = _service(ctx, service)
        click.echo(f"Rolling back {cfg.name} on {cfg.server}...\n")
        DeploymentOrchestrator(cfg, _client(ctx, cfg), DeployOptions(output=_output())).rollback()
    except SSDError as e:
        _fail(e)


@cli.command()
@click.argument('service')
@click.pass_context
def status(ctx, service):
    """Show container status for a service's stack."""
    try:
        cfg = _service(ctx, service)
        click.echo(_client(ctx, cfg).container_status().rstrip())
    except SSDError as e:
        _fail(e)


@cli.command()
@click.argument('service')
@click.option('--follow', '-f', is_flag=True, help='Follow log output')
@click.option('--tail', '-n', type=int, default=0, help='Number of lines to show')
@click.pass_context
def logs(ctx, service, follow, tail):
    """Show a service's logs."""
    try:
        cfg = _service(ctx, service)
        _client(ctx, cfg).logs(cfg.name, follow=follow, tail=tail)
    except SSDError as e:
        _fail(e)


@cli.command()
@click.argument('service', required=False)
@click.pass_context
def config(ctx, service):
    """Print the resolved configuration."""
    try:
        if service:
            services = {service: _service(ctx, service)}
        else:
            services = _all_services(ctx)
    except SSDError as e:
        _fail(e)

    for name, cfg in services.items():
        data = cfg.model_dump(exclude_none=True)
        data['image_name'] = cfg.image_name
        data['project'] = cfg.project
        click.echo(yaml.safe_dump({name: data}, default_flow_style=False, sort_keys=False).rstrip())


@cli.group()
@click.argument('service')
@click.pass_context
def env(ctx, service):
    """Manage a service's environment file on the server."""
    try:
        cfg = _service(ctx, service)
    except SSDError as e:
        _fail(e)
    ctx.obj['service'] = cfg
    ctx.obj['env'] = EnvironmentManager(_client(ctx, cfg), cfg.stack)


@env.command('set')
@click.argument('assignment')
@click.pass_context
def env_set(ctx, assignment):
    """Set KEY=VALUE."""
    key, sep, value = assignment.partition('=')
    if not sep or not key:
        _fail("expected KEY=VALUE")
    name = ctx.obj['service'].name
    try:
        ctx.obj['env'].set(name, key, value)
    except (SSDError, ValueError) as e:
        _fail(e)
    click.echo(f"Set {key} for {name}. Run 'ssd restart {name}' to apply.")


@env.command('list')
@click.pass_context
def env_list(ctx):
    """List variables."""
    try:
        values = ctx.obj['env'].get(ctx.obj['service'].name)
    except SSDError as e:
        _fail(e)
    for key, value in values.items():
        click.echo(f"{key}={value}")


@env.command('rm')
@click.argument('key')
@click.pass_context
def env_rm(ctx, key):
    """Remove a variable."""
    name = ctx.obj['service'].name
    try:
        removed = ctx.obj['env'].remove(name, key)
    except SSDError as e:
        _fail(e)
    if removed:
        click.echo(f"Removed {key} from {name}. Run 'ssd restart {name}' to apply.")
    else:
        click.echo(f"{key} is not set for {name}")


@cli.command()
@click.option('--server', default=None, help='SSH host name (defaults to ssd.yaml)')
@click.option('--email', default=None, help="Email for Let's Encrypt")
@click.pass_context
def provision(ctx, server, email):
    """Install Docker and Traefik on a server."""
    if not server and os.path.exists(ctx.obj['file']):
        try:
            server = _root(ctx).server
        except ConfigError:
            server = None
    if not server:
        _fail("server not specified and not found in config")
    if not email:
        email = click.prompt("Enter email for Let's Encrypt").strip()

    click.echo(f"Provisioning server {server} with email {email}...\n")
    try:
        client = _client(ctx, traefik_config(server))
        Provisioner(client, _output()).provision(email)
    except (SSDError, ValueError) as e:
        _fail(e)
    click.echo("\nProvisioning completed successfully!")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
