"""
CLI interface for sfoperators.

Provides commands to inspect the task registry, preview network plans and
segment indices, and run the operators in local mode against the in-memory
resource store and in-process backends.
"""


import asyncio
import json

import click
import yaml

from sfoperators import __version__


@click.group()
@click.version_option(version=__version__, prog_name="sfoperators")
@click.pass_context
def main(ctx):
    """
    sfoperators - Resource-driven service broker operators.

    Watch service-fabrik resources and drive them to a terminal state.
    """
    from sfoperators.config import load_config

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config()
    except Exception as e:
        # init works without a config; other commands check ctx.obj first
        ctx.obj["config_error"] = str(e)


def _get_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'sfoperators init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize sfoperators configuration."""
    from sfoperators.config import get_sfoperators_home

    home = get_sfoperators_home()
    home.mkdir(parents=True, exist_ok=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "worker_limit": 10,
        "poll_interval": 50,
        "operators": ["task", "backup", "restore", "deployment", "serviceflow"],
        "network_name": "default",
        "networks": [{
            "name": "default",
            "type": "manual",
            "subnets": [{"range": "10.11.0.0/20", "az": "z1", "dns": ["10.11.0.2"]}],
        }],
        "segmentation": {"offset": 1, "size": 8},
        "service_flows": {
            "backup_and_update": [
                {"task_type": "ServiceInstanceBackupTask", "task_description": "Backup before update"},
                {"task_type": "ServiceInstanceUpdateTask", "task_description": "Update instance"},
            ],
        },
        "logging": {"level": "INFO", "format": "pretty"},
        "env_file": str(home / ".env"),
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# SFOPERATORS_OPERATOR_ID=...\n")

    click.echo(f"Initialized sfoperators config at {cfg_path}")


@main.command("tasks")
@click.pass_context
def list_tasks(ctx):
    """List registered task types and the configured ones."""
    from sfoperators.store import InMemoryResourceStore
    from sfoperators.tasks import TaskRegistry

    registry = TaskRegistry(InMemoryResourceStore())
    configured = set(ctx.obj["config"].configured_task_types()) if "config" in ctx.obj else set()
    for task_type in registry.list_task_types():
        marker = "*" if task_type in configured else " "
        click.echo(f"{marker} {task_type}")
    unknown = sorted(configured - set(registry.list_task_types()))
    for task_type in unknown:
        click.echo(f"✗ {task_type} (configured, not registered)", err=True)
    if unknown:
        raise SystemExit(1)


@main.command("plan-network")
@click.option("--index", "index", type=int, required=True, help="Network segment index")
@click.option("--format", "output_format", type=click.Choice(["yaml", "json"]), default="yaml")
@click.pass_context
def plan_network(ctx, index: int, output_format: str):
    """
    Show the network plan of a segment index.

    Example:

        sfoperators plan-network --index 3 --format json
    """
    from sfoperators.errors import ConfigurationError
    from sfoperators.planner import Networks

    config = _get_config(ctx)
    try:
        networks = Networks(config.networks, index, config.segmentation)
        plan = {
            "index": index,
            "networks": networks.to_manifest(),
            "system_reserved": {subnet.range: subnet.system_reserved() for subnet in networks.all},
        }
    except ConfigurationError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    if output_format == "json":
        click.echo(json.dumps(plan, indent=2))
    else:
        click.echo(yaml.safe_dump(plan, sort_keys=False), nl=False)


@main.command("free-index")
@click.argument("deployments", nargs=-1)
@click.option("--subnet", default=None, help="Network the deployments live on")
@click.pass_context
def free_index(ctx, deployments: tuple[str, ...], subnet: str):
    """
    Show capacity and the next free index given existing DEPLOYMENTS.

    Example:

        sfoperators free-index service-fabrik-0000-<guid> service-fabrik-0001-<guid>
    """
    from sfoperators.errors import ConfigurationError, NetworkExhaustedError
    from sfoperators.planner import NetworkSegmentIndex

    config = _get_config(ctx)
    segment_index = NetworkSegmentIndex(config.networks, config.segmentation)
    try:
        capacity = segment_index.capacity(subnet)
        used = segment_index.used_indices(deployments, subnet)
        free = segment_index.free_indices(deployments, subnet)
        click.echo(f"Capacity: {capacity}")
        click.echo(f"Used: {', '.join(str(i) for i in used) or '-'}")
        click.echo(f"Free: {len(free)}")
        click.echo(f"Next free index: {segment_index.find_free_index(deployments, subnet)}")
    except (ConfigurationError, NetworkExhaustedError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)


def _parse_backup(value: str) -> tuple[str, str]:
    instance_id, sep, plan_id = value.partition(":")
    if not sep or not instance_id or not plan_id:
        raise click.BadParameter(f"expected INSTANCE:PLAN, got {value!r}")
    return instance_id, plan_id


@main.command("run")
@click.option("--backup", "backups", multiple=True, help="Queue a backup task, as INSTANCE:PLAN")
@click.option("--flow", "flows", multiple=True, help="Queue a service flow, as NAME:INSTANCE")
@click.option("--duration", type=float, default=5.0, show_default=True, help="Seconds to run")
@click.option("--poll-interval", type=float, default=None, help="Override the poll interval in seconds")
@click.pass_context
def run(ctx, backups: tuple[str, ...], flows: tuple[str, ...], duration: float, poll_interval: float):
    """
    Run the operators locally against an in-memory store.

    Examples:

        sfoperators run --backup 9a1f...:plan-small --poll-interval 1

        sfoperators run --flow backup_and_update:9a1f... --duration 10
    """
    from sfoperators.errors import OperatorsError
    from sfoperators.utils import setup_logging

    config = _get_config(ctx)
    if poll_interval is not None:
        config.poll_interval = poll_interval
    requests = [_parse_backup(value) for value in backups]
    flow_requests = []
    for value in flows:
        name, sep, instance_id = value.partition(":")
        if not sep or not name or not instance_id:
            raise click.BadParameter(f"expected NAME:INSTANCE, got {value!r}", param_hint="--flow")
        flow_requests.append((name, instance_id))

    setup_logging(
        log_file=config.get_log_file_path(),
        log_level=config.get_log_level(),
        log_format=config.get_log_format(),
    )
    try:
        resources = asyncio.run(_run_local(config, requests, flow_requests, duration))
    except OperatorsError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    for resource in resources:
        click.echo(f"{resource.key}  {resource.state.value}  {resource.status.description}")


async def _run_local(config, backups, flows, duration):
    from sfoperators.backends import LocalBackupAgentClient, LocalDirectorClient
    from sfoperators.constants import ResourceGroup, ResourceType
    from sfoperators.engine import Engine
    from sfoperators.schemas import TaskType
    from sfoperators.store import InMemoryResourceStore

    store = InMemoryResourceStore()
    engine = Engine(config, store, director=LocalDirectorClient(), agent=LocalBackupAgentClient())
    for instance_id, plan_id in backups:
        await engine.submit_task(
            TaskType.SERVICE_INSTANCE_BACKUP.value,
            instance_id,
            operation_params={"plan_id": plan_id},
        )
    for name, instance_id in flows:
        await engine.submit_service_flow(name, instance_id)
    await engine.run(duration)

    resources = []
    for group, type_ in (
        (ResourceGroup.SERVICEFLOW, ResourceType.SERIAL_SERVICE_FLOW),
        (ResourceGroup.SERVICEFLOW, ResourceType.TASK),
        (ResourceGroup.BACKUP, ResourceType.DEFAULT_BACKUP),
        (ResourceGroup.RESTORE, ResourceType.DEFAULT_RESTORE),
        (ResourceGroup.DEPLOYMENT, ResourceType.DIRECTOR),
    ):
        resources.extend(await store.list_resources(group, type_))
    return resources


if __name__ == "__main__":
    main()
