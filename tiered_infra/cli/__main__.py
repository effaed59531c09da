#!/usr/bin/env python3
"""Main CLI entry point for the tiered application infrastructure."""

import json
import logging
import sys
from typing import Any, Callable, List, Optional

import click

from .. import __version__
from ..app import App, build_app
from ..config import load_config
from ..deploy import DeploymentResult, DeploymentStatus, StackDeployer
from ..validation import validate_app


def common_options(func: Callable) -> Callable:
    """Options shared by every command that builds the app."""
    options = [
        click.option(
            "--environment", "-e", default="dev", help="Environment (dev/staging/prod)"
        ),
        click.option(
            "--config-dir",
            "-c",
            type=click.Path(file_okay=False),
            help="Configuration directory (default: ./config)",
        ),
        click.option("--account", help="AWS account ID"),
        click.option("--region", "-r", help="AWS region"),
        click.option("--verbose", "-v", is_flag=True, help="Enable debug logging"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build(
    environment: str,
    config_dir: Optional[str],
    account: Optional[str],
    region: Optional[str],
    verbose: bool,
) -> App:
    _setup_logging(verbose)
    config = load_config(environment, config_dir=config_dir, account=account, region=region)
    return build_app(config)


def _print_results(results: List[DeploymentResult]) -> bool:
    all_ok = True
    for result in results:
        icon = "❌" if result.status == DeploymentStatus.FAILED else "✅"
        click.echo(
            f"{icon} {result.stack_name}: {result.status.value} ({result.duration:.1f}s)"
        )
        if result.message and not result.success:
            click.echo(f"   {result.message}")
        for error in result.errors:
            click.echo(f"   - {error}")
        if result.status == DeploymentStatus.FAILED:
            all_ok = False
    return all_ok


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Tiered application infrastructure.

    Synthesizes the network, frontend, backend and static asset stacks as
    CloudFormation templates and deploys them in dependency order.
    """
    pass


@cli.command()
@common_options
@click.option(
    "--output", "-o", default="templates", type=click.Path(file_okay=False),
    help="Directory for the synthesized templates",
)
def synth(
    environment: str, config_dir: Optional[str], account: Optional[str],
    region: Optional[str], verbose: bool, output: str,
) -> None:
    """Write one CloudFormation template per stack plus a manifest."""
    try:
        app = _build(environment, config_dir, account, region, verbose)
        manifest = app.synth(output)
        for stack in app.deployment_order():
            click.echo(f"  {stack.stack_name}.template.json")
        click.echo(f"Manifest written to {manifest}")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@common_options
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def validate(
    environment: str, config_dir: Optional[str], account: Optional[str],
    region: Optional[str], verbose: bool, output_json: bool,
) -> None:
    """Check the synthesized stacks against the network and ordering rules."""
    try:
        app = _build(environment, config_dir, account, region, verbose)
        results = validate_app(app)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if output_json:
        click.echo(json.dumps(results, indent=2))
    else:
        for name, errors in results.items():
            if errors:
                click.echo(f"❌ {name}")
                for error in errors:
                    click.echo(f"  - {error}")
            else:
                click.echo(f"✅ {name}")

    if any(results.values()):
        sys.exit(1)


@cli.command(name="list")
@common_options
def list_stacks(
    environment: str, config_dir: Optional[str], account: Optional[str],
    region: Optional[str], verbose: bool,
) -> None:
    """List stacks in deployment order with their dependencies."""
    try:
        app = _build(environment, config_dir, account, region, verbose)
        for stack in app.deployment_order():
            dependencies = ", ".join(d.stack_name for d in stack.dependencies) or "-"
            click.echo(f"{stack.stack_name}  (depends on: {dependencies})")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@common_options
@click.option("--profile", help="AWS profile to use")
@click.option("--skip-validation", is_flag=True, help="Deploy without running checks")
def deploy(
    environment: str, config_dir: Optional[str], account: Optional[str],
    region: Optional[str], verbose: bool, profile: Optional[str], skip_validation: bool,
) -> None:
    """Create or update every stack in dependency order."""
    try:
        app = _build(environment, config_dir, account, region, verbose)

        if not skip_validation:
            failed = {name: errors for name, errors in validate_app(app).items() if errors}
            if failed:
                click.echo("❌ Validation failed, not deploying:")
                for name, errors in failed.items():
                    for error in errors:
                        click.echo(f"  - [{name}] {error}")
                sys.exit(1)

        click.echo(
            f"🚀 Deploying {len(app.stacks)} stacks to "
            f"{app.config.account}/{app.config.region}"
        )
        deployer = StackDeployer(region=app.config.region, profile=profile)
        if not _print_results(deployer.deploy_app(app)):
            sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@common_options
@click.option("--profile", help="AWS profile to use")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
def destroy(
    environment: str, config_dir: Optional[str], account: Optional[str],
    region: Optional[str], verbose: bool, profile: Optional[str], force: bool,
) -> None:
    """Delete every stack in reverse dependency order."""
    try:
        app = _build(environment, config_dir, account, region, verbose)
        names = [stack.stack_name for stack in app.destroy_order()]

        if not force:
            click.confirm(f"Delete stacks {', '.join(names)}?", abort=True)

        deployer = StackDeployer(region=app.config.region, profile=profile)
        if not _print_results(deployer.destroy_app(app)):
            sys.exit(1)
    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@common_options
@click.option("--profile", help="AWS profile to use")
def status(
    environment: str, config_dir: Optional[str], account: Optional[str],
    region: Optional[str], verbose: bool, profile: Optional[str],
) -> None:
    """Show the CloudFormation status of every stack."""
    try:
        app = _build(environment, config_dir, account, region, verbose)
        deployer = StackDeployer(region=app.config.region, profile=profile)
        for stack_name, stack_status in deployer.get_app_status(app).items():
            click.echo(f"{stack_name}: {stack_status or 'NOT_DEPLOYED'}")
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@common_options
@click.option("--profile", help="AWS profile to use")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def outputs(
    environment: str, config_dir: Optional[str], account: Optional[str],
    region: Optional[str], verbose: bool, profile: Optional[str], output_json: bool,
) -> None:
    """Print the outputs of every deployed stack."""
    try:
        app = _build(environment, config_dir, account, region, verbose)
        deployer = StackDeployer(region=app.config.region, profile=profile)
        all_outputs: Any = {
            stack.stack_name: deployer.get_stack_outputs(stack.stack_name)
            for stack in app.deployment_order()
        }
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if output_json:
        click.echo(json.dumps(all_outputs, indent=2))
        return

    for stack_name, stack_outputs in all_outputs.items():
        click.echo(f"{stack_name}:")
        if not stack_outputs:
            click.echo("  (no outputs)")
        for key, value in sorted(stack_outputs.items()):
            click.echo(f"  {key}: {value}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
