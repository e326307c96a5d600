"""custodianctl command line interface."""

from __future__ import annotations

import json
import logging
import sys
import traceback
from pathlib import Path

import click
import yaml

from custodiancore import __version__
from custodiancore.collectors import MappingRelationshipResolver, StaticCollector
from custodiancore.config import ScannerConfig, StoreConfig
from custodiancore.policy.evaluator import FilterEvaluator
from custodiancore.policy.models import Policy
from custodiancore.policy.validator import PolicyValidator
from custodiancore.reports import ScanReport
from custodiancore.scanner import PolicyScanner
from custodiancore.store import FilePolicyStore


def handle_error(error: Exception, debug: bool) -> None:
    """Handle errors with structured output.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def get_store(ctx: click.Context) -> FilePolicyStore:
    """Get or create the store for this invocation."""
    if "store" not in ctx.obj:
        ctx.obj["store"] = FilePolicyStore(ctx.obj["store_config"].base_dir)
    return ctx.obj["store"]


def _format_for(path: Path, fmt: str | None) -> str:
    if fmt:
        return fmt
    return "yaml" if path.suffix.lower() in (".yaml", ".yml") else "json"


@click.group()
@click.version_option(version=__version__, prog_name="custodianctl")
@click.option(
    '--store-dir',
    type=click.Path(file_okay=False, path_type=Path),
    help='Policy store directory (default: $CUSTODIAN_HOME or ~/.custodian)',
)
@click.option('--config', '-c', type=click.Path(exists=True, path_type=Path), help='Scanner configuration file')
@click.option('--region', help='Region to scan (overrides configuration)')
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, store_dir: Path | None, config: Path | None, region: str | None, debug: bool):
    """Custodian CLI - cloud governance policies, scans and history."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    try:
        store_config = StoreConfig(base_dir=store_dir) if store_dir else StoreConfig.from_env()
        scanner_config = ScannerConfig.from_yaml(config) if config else ScannerConfig.from_env()
        if region:
            scanner_config.region = region
    except (ValueError, OSError, yaml.YAMLError) as e:
        handle_error(e, debug)

    ctx.obj['store_config'] = store_config
    ctx.obj['scanner_config'] = scanner_config


@cli.group(name="policy")
def policy_group():
    """Manage stored policies."""
    pass


@policy_group.command(name="list")
@click.option('--json', 'as_json', is_flag=True, help='Print policies as JSON')
@click.pass_context
def policy_list(ctx: click.Context, as_json: bool):
    """List stored policies."""
    debug = ctx.obj.get('debug', False)

    try:
        policies = get_store(ctx).list()
        if as_json:
            click.echo(json.dumps([p.to_dict() for p in policies], indent=2))
            return

        if not policies:
            click.echo("No policies found.")
            return

        click.echo(f"{'NAME':<32} {'TYPE':<8} {'STATUS':<10} {'VERSION':>7} {'RUNS':>5}")
        for p in policies:
            click.echo(f"{p.name:<32} {p.resource_type:<8} {p.status.value:<10} {p.version:>7} {p.run_count:>5}")
    except Exception as e:
        handle_error(e, debug)


@policy_group.command(name="show")
@click.argument('name')
@click.option('--format', 'fmt', type=click.Choice(['json', 'yaml']), default='yaml', help='Output format')
@click.option('--version', 'version', type=int, help='Show an archived version instead of the current one')
@click.pass_context
def policy_show(ctx: click.Context, name: str, fmt: str, version: int | None):
    """Show a policy, the current version unless --version is given."""
    debug = ctx.obj.get('debug', False)

    try:
        store = get_store(ctx)
        if version is None:
            click.echo(store.export_policy(name, fmt).decode("utf-8"))
            return
        record = store.get_version(name, version).to_dict()
        if fmt == "json":
            click.echo(json.dumps(record, indent=2))
        else:
            click.echo(yaml.safe_dump(record, default_flow_style=False, sort_keys=False))
    except Exception as e:
        handle_error(e, debug)


@policy_group.command(name="apply")
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def policy_apply(ctx: click.Context, path: Path):
    """Create or update a policy from a JSON or YAML file.

    Example:
      custodianctl policy apply ./policies/stale-ec2.yaml
    """
    debug = ctx.obj.get('debug', False)

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        PolicyValidator().validate_or_raise(data)
        saved = get_store(ctx).save(Policy.from_dict(data))
        click.echo(f"Saved policy '{saved.name}' (version {saved.version})")
    except Exception as e:
        handle_error(e, debug)


@policy_group.command(name="delete")
@click.argument('name')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def policy_delete(ctx: click.Context, name: str, yes: bool):
    """Delete a policy (its history is kept)."""
    debug = ctx.obj.get('debug', False)

    try:
        store = get_store(ctx)
        store.get(name)
        if not yes:
            click.confirm(f"Delete policy '{name}'?", abort=True)
        store.delete(name)
        click.echo(f"Deleted policy '{name}'")
    except click.Abort:
        raise
    except Exception as e:
        handle_error(e, debug)


@policy_group.command(name="history")
@click.argument('name')
@click.option('--json', 'as_json', is_flag=True, help='Print history as JSON')
@click.pass_context
def policy_history(ctx: click.Context, name: str, as_json: bool):
    """Show archived versions of a policy."""
    debug = ctx.obj.get('debug', False)

    try:
        entries = get_store(ctx).history(name)
        if as_json:
            click.echo(json.dumps([e.to_dict() for e in entries], indent=2))
            return

        if not entries:
            click.echo(f"No history for '{name}'.")
            return

        for entry in entries:
            click.echo(f"v{entry.version:<4} {entry.saved_at.isoformat()}  {entry.policy.status.value}")
    except Exception as e:
        handle_error(e, debug)


@policy_group.command(name="export")
@click.argument('name')
@click.option('--format', 'fmt', type=click.Choice(['json', 'yaml']), help='Export format (default: from --out, else json)')
@click.option('--out', '-o', type=click.Path(dir_okay=False, path_type=Path), help='Output file (default: stdout)')
@click.pass_context
def policy_export(ctx: click.Context, name: str, fmt: str | None, out: Path | None):
    """Export a policy."""
    debug = ctx.obj.get('debug', False)

    try:
        fmt = _format_for(out, fmt) if out else (fmt or "json")
        data = get_store(ctx).export_policy(name, fmt)
        if out is None:
            click.echo(data.decode("utf-8"))
            return
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(data)
        click.echo(f"Exported policy '{name}' to {out}")
    except Exception as e:
        handle_error(e, debug)


@policy_group.command(name="import")
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--format', 'fmt', type=click.Choice(['json', 'yaml']), help='Input format (default: from extension)')
@click.pass_context
def policy_import(ctx: click.Context, path: Path, fmt: str | None):
    """Import a policy exported from another store."""
    debug = ctx.obj.get('debug', False)

    try:
        policy = get_store(ctx).import_policy(path.read_bytes(), _format_for(path, fmt))
        click.echo(f"Imported policy '{policy.name}' (version {policy.version})")
    except Exception as e:
        handle_error(e, debug)


@policy_group.command(name="validate")
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def policy_validate(ctx: click.Context, path: Path):
    """Validate a policy file without saving it."""
    errors = PolicyValidator().validate_file(path)
    if errors:
        click.echo(f"{path}: {len(errors)} error(s)", err=True)
        for error in errors:
            click.echo(f"  - {error}", err=True)
        sys.exit(1)
    click.echo(f"{path}: valid")


@cli.command()
@click.option('--policy', '-p', 'policy_name', help='Scan one policy (default: all active policies)')
@click.option(
    '--snapshots', '-s', required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='JSON or YAML file of resource snapshots by resource type',
)
@click.option('--out', '-o', type=click.Path(file_okay=False, path_type=Path), help='Write JSON, Markdown and CSV reports')
@click.option('--record-runs', is_flag=True, help='Count the scan as a run of each scanned policy')
@click.option('--json', 'as_json', is_flag=True, help='Print the scan result as JSON')
@click.pass_context
def scan(
    ctx: click.Context,
    policy_name: str | None,
    snapshots: Path,
    out: Path | None,
    record_runs: bool,
    as_json: bool,
):
    """Scan policies against resource snapshots (always a dry run).

    Examples:
      custodianctl scan --snapshots ./resources.yaml
      custodianctl scan --policy stale-ec2 --snapshots ./resources.json --out ./scan-results
    """
    debug = ctx.obj.get('debug', False)

    try:
        store = get_store(ctx)
        collector = StaticCollector.from_file(snapshots)
        scanner = PolicyScanner(
            store,
            collector,
            ctx.obj['scanner_config'],
            evaluator=FilterEvaluator(MappingRelationshipResolver(collector)),
        )

        if policy_name:
            report = ScanReport(results=[scanner.scan_policy(policy_name)])
        else:
            report = ScanReport.from_batch(scanner.scan_all_policies())

        if record_runs:
            for result in report.results:
                store.record_run(result.policy_name)

        if as_json:
            click.echo(json.dumps(report.to_dict(), indent=2, sort_keys=True))
        else:
            for result in report.results:
                s = result.summary
                click.echo(
                    f"{result.policy_name}: {s.matched_resources}/{s.total_scanned} matched, "
                    f"{s.actions_planned} actions planned ({s.high_risk_actions} high risk), "
                    f"est. savings ${s.estimated_cost_savings:.2f}/month"
                )
                for error in result.errors:
                    click.echo(f"  ! {error}", err=True)
            for error in report.errors:
                click.echo(f"Warning: {error}", err=True)

        if out:
            report.write_json(out / "scan_report.json")
            report.write_markdown(out / "scan_report.md")
            report.write_csv(out / "scan_report.csv")
            if not as_json:
                click.echo(f"\nReports written to {out}")
    except Exception as e:
        handle_error(e, debug)


@cli.group(name="config")
def config_group():
    """Inspect runtime configuration."""
    pass


@config_group.command(name="show")
@click.pass_context
def config_show(ctx: click.Context):
    """Show the effective scanner and store configuration."""
    debug = ctx.obj.get('debug', False)

    try:
        click.echo(yaml.safe_dump(
            {
                "scanner": ctx.obj['scanner_config'].to_dict(),
                "store": ctx.obj['store_config'].to_dict(),
            },
            default_flow_style=False,
            sort_keys=False,
        ))
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--host', default='127.0.0.1', help='Host to bind to')
@click.option('--port', default=8000, type=int, help='Port to bind to')
@click.option(
    '--snapshots', '-s',
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='JSON or YAML file of resource snapshots served to scans',
)
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, snapshots: Path | None):
    """Start the HTTP API server.

    Examples:
      custodianctl serve --snapshots ./resources.yaml
      custodianctl serve --host 0.0.0.0 --port 8080
    """
    import uvicorn

    from custodiancore.server import create_app

    debug = ctx.obj.get('debug', False)

    try:
        collector = StaticCollector.from_file(snapshots) if snapshots else StaticCollector()
        app = create_app(get_store(ctx), collector, ctx.obj['scanner_config'], debug=debug)

        click.echo(f"Starting custodian server on http://{host}:{port}")
        click.echo(f"API documentation: http://{host}:{port}/docs")
        uvicorn.run(app, host=host, port=port, log_level="debug" if debug else "info")
    except Exception as e:
        handle_error(e, debug)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == '__main__':
    main()
