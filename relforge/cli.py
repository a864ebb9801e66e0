"""
CLI interface for relforge.

Provides commands to inspect a release's compile order, apply its
precompiled packages, compile it through the configured agent, and list
the cached records.

Release files are YAML mappings (see Release.from_dict); relative archive
paths are resolved against the release file's directory.
"""

import sys
from pathlib import Path
from typing import Any, Optional

import click
import yaml

from relforge import __version__
from relforge.agent import (
    AgentClient,
    ClassifyingAgentClient,
    CompiledPackageRef,
    Dependencies,
    TimeoutAgentClient,
    load_agent_factory,
)
from relforge.blobstore import LocalBlobstore
from relforge.compiler import PackagesCompiler
from relforge.config import RelforgeConfig, load_config
from relforge.errors import AgentTransportError, ConfigError, RelforgeError
from relforge.eventlog import new_log
from relforge.repos import ReposFactory
from relforge.schemas import PackageKey, Release
from relforge.utils import setup_logging


class _UnavailableAgentClient:
    """Stands in for the agent in commands that never call it."""

    def compile_package(
        self,
        blob_id: str,
        fingerprint: str,
        name: str,
        version: str,
        dependencies: Dependencies,
    ) -> CompiledPackageRef:
        raise AgentTransportError("No agent configured")

    def stop(self) -> Any:
        raise AgentTransportError("No agent configured")

    def post_start(self) -> Any:
        raise AgentTransportError("No agent configured")


def _load_release(release_file: Path) -> Release:
    """Read a release YAML file, exiting on errors."""
    try:
        with open(release_file) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        click.echo(f"✗ Invalid release file {release_file}: {e}", err=True)
        raise SystemExit(1)

    if not isinstance(data, dict):
        click.echo(f"✗ Release file {release_file} must contain a mapping", err=True)
        raise SystemExit(1)

    try:
        return Release.from_dict(data, base_dir=release_file.parent)
    except RelforgeError as e:
        click.echo(f"✗ Invalid release: {e}", err=True)
        raise SystemExit(1)


def _require_config(ctx: click.Context) -> RelforgeConfig:
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _create_agent_client(config: RelforgeConfig) -> AgentClient:
    """Build the configured agent client with classification and timeout."""
    if not config.agent.factory:
        raise ConfigError("No agent configured (set agent.factory in config.yaml)")

    factory = load_agent_factory(config.agent.factory)
    client: AgentClient = ClassifyingAgentClient(factory())
    if config.agent.timeout_s is not None:
        client = TimeoutAgentClient(client, config.agent.timeout_s)
    return client


def _build_compiler(config: RelforgeConfig, agent_client: AgentClient) -> PackagesCompiler:
    repos = ReposFactory(config.repos_dir)
    return PackagesCompiler(
        agent_client=agent_client,
        packages_repo=repos.new_packages_repo(),
        compiled_packages_repo=repos.new_compiled_packages_repo(),
        blobstore=LocalBlobstore(config.blobstore_dir),
        event_log=new_log(config.event_log, stream=sys.stdout),
        max_workers=config.max_workers,
    )


@click.group()
@click.version_option(version=__version__, prog_name="relforge")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.yaml (default: $RELFORGE_HOME/config.yaml)",
)
@click.pass_context
def main(ctx, config_path: Optional[Path]):
    """
    relforge - Compile release packages through a remote agent.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ConfigError) as e:
        # Commands that need config check ctx.obj for it
        ctx.obj["config_error"] = str(e)
        return

    ctx.obj["config"] = config
    setup_logging(config.log.level, config.log.format, config.log.file)


@main.command("order")
@click.argument("release_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def order(release_file: Path):
    """Print the order packages of RELEASE_FILE compile in."""
    release = _load_release(release_file)

    try:
        packages = release.resolved_package_dependencies()
    except RelforgeError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    for i, pkg in enumerate(packages, start=1):
        deps = ", ".join(dep.name for dep in pkg.dependencies)
        suffix = f" (after {deps})" if deps else ""
        click.echo(f"{i}. {pkg.name}/{pkg.version}{suffix}")


@main.command("apply-precompiled")
@click.argument("release_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def apply_precompiled(ctx, release_file: Path):
    """Upload and record the precompiled packages of RELEASE_FILE."""
    config = _require_config(ctx)
    release = _load_release(release_file)

    compiler = _build_compiler(config, _UnavailableAgentClient())
    try:
        compiler.apply_precompiled_packages(release)
    except RelforgeError as e:
        click.echo(f"✗ {release} failed: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ Applied {len(release.compiled_packages)} precompiled packages of {release}")


@main.command("compile")
@click.argument("release_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--apply-precompiled/--no-apply-precompiled",
    default=True,
    help="Record the release's precompiled packages before compiling",
)
@click.pass_context
def compile_release(ctx, release_file: Path, apply_precompiled: bool):
    """Compile every package of RELEASE_FILE through the agent."""
    config = _require_config(ctx)
    release = _load_release(release_file)

    try:
        agent_client = _create_agent_client(config)
    except ConfigError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    compiler = _build_compiler(config, agent_client)
    try:
        if apply_precompiled:
            compiler.apply_precompiled_packages(release)
        compiler.compile(release)
    except RelforgeError as e:
        click.echo(f"✗ {release} failed: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ {release} compiled")


@main.command("records")
@click.option("--compiled/--source", default=True, help="List compiled (default) or source records")
@click.option("--name", "package_name", default=None, help="Only list records of this package")
@click.pass_context
def records(ctx, compiled: bool, package_name: Optional[str]):
    """List cached package records."""
    config = _require_config(ctx)
    repos = ReposFactory(config.repos_dir)
    repo = repos.new_compiled_packages_repo() if compiled else repos.new_packages_repo()

    try:
        entries = repo.all()
    except RelforgeError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    if package_name is not None:
        try:
            entries = {
                key: record for key, record in entries.items()
                if PackageKey.parse(key).name == package_name
            }
        except ValueError as e:
            click.echo(f"✗ {e}", err=True)
            raise SystemExit(1)

    if not entries:
        click.echo("No records")
        return

    for key, record in entries.items():
        click.echo(f"{key}  {record.blob_id}  {record.fingerprint}")


if __name__ == "__main__":
    main()
