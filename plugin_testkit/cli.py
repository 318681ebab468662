"""
CLI entry point for plugin-testkit.
"""

import dataclasses
import logging
from functools import wraps
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from plugin_testkit.exceptions import (
    PluginTestkitError,
    SampleNotFoundError,
    format_error_for_cli,
)
from plugin_testkit.util.logging import resolve_level, setup_logging
from plugin_testkit.util.progress import StageTracker, show_summary, track_progress
from plugin_testkit.workspace import CONFIG_FILE, Workspace

app = typer.Typer(
    name="plugin-testkit",
    help="Scaffold, implement and exercise sample Kubernetes operators",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


def handle_errors(func):
    """Decorator to handle exceptions in CLI commands with nice formatting."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except PluginTestkitError as e:
            console.print(format_error_for_cli(e))
            raise typer.Exit(1)
        except Exception as e:
            logger.debug("Unexpected error", exc_info=True)
            console.print(f"[red]Unexpected error:[/red] {str(e)}")
            console.print(
                "\n[yellow]This may be a bug. Re-run with --verbose for details.[/yellow]"
            )
            raise typer.Exit(1)

    return wrapper


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Scaffold, implement and exercise sample Kubernetes operators."""
    setup_logging(resolve_level(verbose))


@app.command()
@handle_errors
def init(
    workspace_dir: str = typer.Argument(..., help="Workspace directory to initialize"),
    with_templates: bool = typer.Option(
        False, "--with-templates", help="Copy default payload fragments for customization"
    ),
):
    """Initialize a new plugin-testkit workspace."""
    console.print(f"[bold blue]Initializing workspace:[/bold blue] {workspace_dir}")

    workspace = Workspace(Path(workspace_dir))
    workspace.initialize()

    console.print(f"[green]✓ Created directory structure in {workspace_dir}[/green]")
    console.print(f"[green]✓ Wrote configuration to {CONFIG_FILE}[/green]")

    if with_templates:
        from plugin_testkit.util.templates import TemplateLoader

        loader = TemplateLoader(workspace.root)
        loader.copy_default_templates_to_workspace()
        console.print("[green]✓ Copied default templates to templates/[/green]")
        for _source, name in loader.list_available_templates():
            console.print(f"  [dim]{name}[/dim]")
        console.print("[dim]  Workspace fragments override the packaged ones by name[/dim]")

    console.print("\n[dim]Next steps:[/dim]")
    console.print(f"  cd {workspace_dir}")
    console.print("  plugin-testkit generate --dry-run")
    console.print("  plugin-testkit run")


@app.command()
@handle_errors
def samples():
    """List configured and built-in samples."""
    from plugin_testkit.pipeline import configured_samples, make_runner
    from plugin_testkit.samples.catalog import builtin_samples

    workspace = Workspace(Path.cwd())
    runner = make_runner(workspace.samples_dir, dry_run=True)

    configured = []
    if workspace.config_file.exists():
        configured = configured_samples(workspace.settings(), runner)

    table = Table(title="Samples")
    table.add_column("Name", style="cyan")
    table.add_column("Source")
    table.add_column("Resource")
    table.add_column("Plugins")
    table.add_column("Binary", style="dim")

    configured_names = {descriptor.name for descriptor in configured}
    rows = [(d, "config") for d in configured] + [
        (d, "built-in") for d in builtin_samples(runner) if d.name not in configured_names
    ]
    for descriptor, source in rows:
        table.add_row(
            descriptor.name,
            source,
            f"{descriptor.gvk.api_group(descriptor.domain)}/{descriptor.gvk.version}, "
            f"Kind={descriptor.gvk.kind}",
            descriptor.plugin_selector,
            descriptor.binary,
        )

    console.print(table)


@app.command()
@handle_errors
def generate(
    sample: str | None = typer.Option(None, "--sample", help="Generate only this sample"),
    no_init: bool = typer.Option(False, "--no-init", help="Skip the init phase"),
    no_api: bool = typer.Option(False, "--no-api", help="Skip the create api phase"),
    no_webhook: bool = typer.Option(False, "--no-webhook", help="Skip the create webhook phase"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the scaffolding commands instead of running them"
    ),
):
    """Scaffold samples (stops at the first failing sample)."""
    from plugin_testkit.pipeline import make_runner, resolve_samples
    from plugin_testkit.samples import GeneratorConfig, ScaffoldGenerator

    workspace = Workspace.find()
    runner = make_runner(workspace.samples_dir, dry_run=dry_run)
    descriptors = resolve_samples(workspace.settings(), runner, sample)

    config = GeneratorConfig(init=not no_init, api=not no_api, webhook=not no_webhook)
    if not config.phases:
        console.print("[yellow]All phases disabled; nothing to do.[/yellow]")
        raise typer.Exit(0)

    mode = "dry run" if dry_run else "scaffolding"
    console.print(
        f"[bold blue]Generating {len(descriptors)} sample(s) ({mode}):[/bold blue] "
        f"phases={', '.join(phase.value for phase in config.phases)}"
    )

    with track_progress("scaffolding", total=len(descriptors) * len(config.phases)) as advance:
        generator = ScaffoldGenerator(
            config, on_phase=lambda descriptor, phase: advance(f"{descriptor.name}: {phase.value}")
        )
        generated = generator.generate_all(descriptors)

    if dry_run:
        console.print("\n[bold]Commands:[/bold]")
        for recorded in runner.commands:
            console.print(f"  [dim]({recorded.cwd})[/dim] {recorded}")

    for descriptor in generated:
        console.print(f"[green]✓ {descriptor.name}[/green] [dim]{descriptor.project_dir}[/dim]")


@app.command()
@handle_errors
def mutate(
    sample_dir: str = typer.Argument(..., help="Scaffolded sample directory under samples/"),
    webhook: bool = typer.Option(False, "--webhook", help="Also implement webhook validation"),
    image: str | None = typer.Option(None, "--image", help="Operator image for make bundle"),
    no_bundle: bool = typer.Option(False, "--no-bundle", help="Skip bundle generation"),
):
    """Implement the memcached logic in an already scaffolded sample."""
    from plugin_testkit.pipeline import make_runner, resolve_samples
    from plugin_testkit.samples import MutatorConfig, SampleMutator
    from plugin_testkit.samples.catalog import memcached_sample
    from plugin_testkit.util.templates import TemplateLoader

    workspace = Workspace.find()
    settings = workspace.settings()
    runner = make_runner(workspace.samples_dir)

    try:
        descriptor = resolve_samples(settings, runner, sample_dir)[0]
    except SampleNotFoundError:
        descriptor = dataclasses.replace(memcached_sample(runner), name=sample_dir)

    if not descriptor.project_dir.is_dir():
        console.print(f"[red]Error: {descriptor.project_dir} does not exist.[/red]")
        console.print(
            f"[dim]Scaffold it first: plugin-testkit generate --sample {sample_dir}[/dim]"
        )
        raise typer.Exit(1)

    config = MutatorConfig(
        image=image or settings.get("image", MutatorConfig().image),
        webhook=webhook,
        bundle=not no_bundle,
    )
    mutator = SampleMutator(descriptor, config, TemplateLoader(workspace.root))
    tracker = StageTracker(f"Implementing {descriptor.name}", len(mutator.stages()))
    mutator.on_stage = tracker

    mutator.mutate()
    tracker.add_detail("Project", descriptor.project_dir)
    tracker.add_detail("Webhook", "enabled" if webhook else "disabled")
    tracker.finish()


@app.command(name="cluster-version")
@handle_errors
def cluster_version():
    """Show cluster versions and the dependency bundles they select."""
    from plugin_testkit.lifecycle.dependencies import CertManagerBundle, PrometheusOperatorBundle
    from plugin_testkit.pipeline import cluster_client, lifecycle_config

    workspace = Workspace(Path.cwd())
    settings = workspace.settings() if workspace.config_file.exists() else Workspace.DEFAULT_CONFIG
    config = lifecycle_config(settings)

    client = cluster_client(settings)
    version = client.version()

    show_summary(
        "Cluster",
        {
            "Client": version.client.git_version,
            "Server": version.server.git_version,
            "Prometheus operator": PrometheusOperatorBundle(
                client, config.versions, config.threshold
            ).select_url(version),
            "cert-manager": CertManagerBundle(
                client, config.versions, config.threshold
            ).select_url(version),
        },
    )


@app.command()
@handle_errors
def run(
    skip_local: bool = typer.Option(False, "--skip-local", help="Skip the local make run check"),
    skip_cluster: bool = typer.Option(False, "--skip-cluster", help="Skip the cluster run"),
    keep: bool = typer.Option(False, "--keep", help="Keep the generated sample directory"),
):
    """Generate, implement and exercise the memcached sample end to end."""
    from plugin_testkit.pipeline import EndToEndRun

    workspace = Workspace.find()
    e2e = EndToEndRun(
        workspace,
        on_stage=lambda name: console.print(f"  [dim]•[/dim] {name}"),
    )

    console.print(f"[bold blue]End-to-end run:[/bold blue] {e2e.descriptor.name}")
    result = e2e.run(skip_local=skip_local, skip_cluster=skip_cluster, keep=keep)

    report = result.report
    summary = {
        "Sample": result.sample.name,
        "Local run": "passed" if result.local_checked else "skipped",
    }
    if report is not None:
        summary["Cluster run"] = "passed" if report.succeeded else "failed"
        summary["Furthest state"] = report.reached.value
        summary["States"] = " -> ".join(change.state.value for change in report.history)
        summary["Report"] = str(result.report_path)
    else:
        summary["Cluster run"] = "skipped"
    show_summary("End-to-end run", summary, ok=report is None or report.succeeded)

    if report is not None and not report.succeeded:
        if report.error is not None:
            console.print(format_error_for_cli(report.error))
        for failure in report.teardown_failures:
            console.print(
                f"[yellow]Teardown step {failure.step} failed:[/yellow] "
                f"{escape(str(failure.error))}"
            )
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
