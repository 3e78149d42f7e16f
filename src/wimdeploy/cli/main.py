"""
WimDeploy CLI Main Entry Point.

Provides the command-line interface for inspecting target disks and source
media, and for deploying an image onto a pre-partitioned disk.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
import humanize

from wimdeploy import __version__
from wimdeploy.core.config import WimDeployConfig, load_config
from wimdeploy.core.exceptions import DeployError
from wimdeploy.core.models import CustomizationRequest, DeploymentRequest
from wimdeploy.core.safety import ExecutionPlan
from wimdeploy.core.session import Session

console = Console()


def get_session(ctx: click.Context) -> Session:
    """Get or create session from context."""
    if "session" not in ctx.obj:
        config = ctx.obj.get("config") or load_config()
        ctx.obj["session"] = Session(config=config)
        ctx.call_on_close(ctx.obj["session"].close)
    return ctx.obj["session"]


@click.group()
@click.version_option(version=__version__, prog_name="WimDeploy")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    json_output: bool,
    quiet: bool,
) -> None:
    """
    WimDeploy - Deploy Windows images onto pre-partitioned disks.

    Applies an image from an ISO or WIM, customizes it offline, writes boot
    files and registers recovery images.
    """
    ctx.ensure_object(dict)

    if config:
        ctx.obj["config"] = WimDeployConfig.load(config)
    else:
        ctx.obj["config"] = load_config()

    ctx.obj["json_output"] = json_output
    ctx.obj["quiet"] = quiet


@cli.command("partitions")
@click.argument("disk", type=int)
@click.pass_context
def show_partitions(ctx: click.Context, disk: int) -> None:
    """Show the partitions of DISK and the role each one will play."""
    session = get_session(ctx)
    json_output = ctx.obj.get("json_output", False)

    with console.status("Reading partitions..."):
        disk_info, partition_map = session.inspect_disk(disk)

    if json_output:
        click.echo(
            json.dumps(
                {"disk": disk_info.to_dict(), **partition_map.to_dict()},
                indent=2,
                default=str,
            )
        )
        return

    table = Table(title=f"Disk {disk_info.number}: {disk_info.friendly_name}")
    table.add_column("#", style="cyan")
    table.add_column("Type", style="yellow")
    table.add_column("Size", style="green")
    table.add_column("Letter", style="magenta")
    table.add_column("Roles", style="white")

    for part in partition_map.partitions:
        roles = [r.name.replace("_", " ").title() for r in partition_map.roles_of(part)]
        table.add_row(
            str(part.number),
            part.partition_type.value,
            humanize.naturalsize(part.size_bytes, binary=True),
            f"{part.drive_letter}:" if part.drive_letter else "-",
            ", ".join(roles),
        )

    console.print(table)
    if not ctx.obj.get("quiet"):
        console.print(
            f"[cyan]Layout:[/cyan] {partition_map.layout.value}  "
            f"[cyan]Style:[/cyan] {disk_info.partition_style}  "
            f"[cyan]Size:[/cyan] {humanize.naturalsize(disk_info.size_bytes, binary=True)}"
        )


@cli.command("images")
@click.argument("source", type=click.Path(path_type=Path))
@click.pass_context
def list_images(ctx: click.Context, source: Path) -> None:
    """List the image indexes contained in an ISO or WIM SOURCE."""
    session = get_session(ctx)
    json_output = ctx.obj.get("json_output", False)

    with console.status("Reading image metadata..."):
        images = session.list_images(source)

    if json_output:
        click.echo(
            json.dumps(
                [
                    {
                        "index": i.index,
                        "name": i.name,
                        "description": i.description,
                        "size_bytes": i.size_bytes,
                    }
                    for i in images
                ],
                indent=2,
            )
        )
        return

    table = Table(title=str(source))
    table.add_column("Index", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Size", style="green")
    table.add_column("Description", style="yellow")

    for image in images:
        table.add_row(
            str(image.index),
            image.name,
            humanize.naturalsize(image.size_bytes, binary=True),
            image.description,
        )

    console.print(table)


@cli.command("deploy")
@click.option("--disk", "-d", "disk_number", type=int, required=True, help="Target disk number")
@click.option(
    "--source",
    "-s",
    type=click.Path(path_type=Path),
    required=True,
    help="ISO or WIM to deploy",
)
@click.option("--index", "-i", type=click.IntRange(min=1), default=1, show_default=True, help="Image index")
@click.option("--unattend", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Answer file to copy into the image")
@click.option("--native-boot", is_flag=True, help="Do not write boot files")
@click.option("--feature", "features", multiple=True, help="Optional feature to enable (repeatable)")
@click.option("--remove-feature", "remove_features", multiple=True, help="Optional feature to disable (repeatable)")
@click.option(
    "--feature-source",
    type=click.Path(exists=True, path_type=Path),
    help="Folder or WIM providing feature payloads",
)
@click.option(
    "--feature-source-index",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Index to mount when --feature-source is a WIM",
)
@click.option("--driver", "drivers", multiple=True, type=click.Path(exists=True, path_type=Path), help="Driver file or folder (repeatable)")
@click.option("--package", "packages", multiple=True, type=click.Path(exists=True, path_type=Path), help="Package to add (repeatable)")
@click.option("--inject", "files", multiple=True, type=click.Path(exists=True, path_type=Path), help="File or folder to copy into the image root (repeatable)")
@click.option(
    "--add-payload-for-removed-features",
    is_flag=True,
    help="Restore payload of features whose payload was removed",
)
@click.option("--force", is_flag=True, help="Skip confirmation prompts")
@click.option("--dry-run", is_flag=True, help="Show what would be done")
@click.pass_context
def deploy(
    ctx: click.Context,
    disk_number: int,
    source: Path,
    index: int,
    unattend: Path | None,
    native_boot: bool,
    features: tuple[str, ...],
    remove_features: tuple[str, ...],
    feature_source: Path | None,
    feature_source_index: int,
    drivers: tuple[Path, ...],
    packages: tuple[Path, ...],
    files: tuple[Path, ...],
    add_payload_for_removed_features: bool,
    force: bool,
    dry_run: bool,
) -> None:
    """Deploy an image onto a pre-partitioned disk."""
    session = get_session(ctx)
    json_output = ctx.obj.get("json_output", False)

    request = DeploymentRequest(
        disk_number=disk_number,
        source=source,
        index=index,
        native_boot=native_boot,
        force=force,
        customization=CustomizationRequest(
            drivers=list(drivers),
            files=list(files),
            packages=list(packages),
            features=list(features),
            remove_features=list(remove_features),
            unattend=unattend,
            feature_source=feature_source,
            feature_source_index=feature_source_index,
            add_payload_for_removed_features=add_payload_for_removed_features,
        ),
    )

    if dry_run:
        with console.status("Inspecting target disk..."):
            plan = session.plan_deployment(request)
        if json_output:
            click.echo(
                json.dumps(
                    {
                        "request": request.to_dict(),
                        "target": plan.target,
                        "steps": plan.steps,
                        "warnings": plan.warnings,
                    },
                    indent=2,
                )
            )
            return
        console.print(
            Panel(
                "[yellow]DRY RUN - No changes will be made[/yellow]\n\n" + plan.get_plan_text(),
                title="Deployment Plan",
            )
        )
        return

    def confirm(plan: ExecutionPlan) -> bool:
        console.print(Panel(plan.get_plan_text(), title="Deployment Plan"))
        if not click.confirm("Continue with deployment?", default=False):
            return False

        confirm_str = session.safety.generate_confirmation_string(disk_number)
        console.print(f"[red]⚠️  This will overwrite the Windows partition on disk {disk_number}[/red]")
        user_confirm = click.prompt(f"Type '{confirm_str}' to confirm")
        verified, message = session.safety.verify_confirmation(disk_number, user_confirm)
        if not verified:
            console.print(f"[red]{message}[/red]")
        return verified

    try:
        result = session.deploy(request, confirm=confirm)
    except DeployError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    duration = result.duration_seconds or 0.0
    panel = Panel(
        f"""[green]✓ Deployment completed[/green]

[cyan]Disk:[/cyan] {result.disk_number}
[cyan]Layout:[/cyan] {result.layout.value}
[cyan]Windows:[/cyan] {result.windows_root}
[cyan]Stages:[/cyan] {", ".join(result.stages)}
[cyan]Duration:[/cyan] {humanize.naturaldelta(duration)}""",
        title="Deployment",
    )
    console.print(panel)


def main() -> None:
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
