"""CLI interface for blobsync."""

import logging
from typing import Any, Optional

import click

from .api import BlobClient
from .config import SyncConfig, load_config
from .exceptions import BlobSyncError, ConfigError
from .output import OutputFormatter
from .utils import format_size

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool, log_file: Optional[str] = None) -> None:
    """Configure root logging for the CLI.

    Args:
        verbose: Enable debug output for blobsync modules
        log_file: Optional file receiving the same log records
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT, datefmt="%H:%M:%S")
        logging.getLogger("blobsync").setLevel(logging.DEBUG)
        # httpx logs every request at INFO/DEBUG; keep it readable
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    else:
        # Default to WARNING to suppress debug/info messages
        logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)

    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def _load_config(ctx: Any, **extra: Any) -> SyncConfig:
    """Load the configuration, exiting with an error message on failure."""
    out: OutputFormatter = ctx.obj["out"]
    overrides = dict(ctx.obj["overrides"])
    overrides.update(extra)
    try:
        return load_config(ctx.obj["config_path"], **overrides)
    except ConfigError as e:
        out.error(str(e))
        raise click.exceptions.Exit(1) from e


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    help="JSON config file (default: ~/.config/blobsync/config.json)",
)
@click.option("--account-name", "-a", help="Storage account name")
@click.option("--account-key", "-k", help="Storage account key")
@click.option("--sas-token", help="Shared access signature")
@click.option("--endpoint", help="Blob service URL")
@click.option("--container", "-C", help="Container to synchronize with")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose/debug logging output")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
@click.version_option(package_name="blobsync")
@click.pass_context
def main(
    ctx: Any,
    config_path: Optional[str],
    account_name: Optional[str],
    account_key: Optional[str],
    sas_token: Optional[str],
    endpoint: Optional[str],
    container: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
    log_file: Optional[str],
) -> None:
    """blobsync - Keep a local folder synchronized with a blob container."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    ctx.obj["overrides"] = {
        "account_name": account_name,
        "account_key": account_key,
        "sas_token": sas_token,
        "endpoint": endpoint,
        "container": container,
    }
    setup_logging(verbose, log_file)


@main.command()
@click.argument("root", required=False, type=click.Path(file_okay=False))
@click.option("--workers", "-w", type=int, help="Number of upload/delete workers")
@click.option("--max-retries", type=int, help="Retries per remote call (default: 0)")
@click.option("--no-progress", is_flag=True, help="Disable the reconciliation spinner")
@click.pass_context
def run(
    ctx: Any,
    root: Optional[str],
    workers: Optional[int],
    max_retries: Optional[int],
    no_progress: bool,
) -> None:
    """Reconcile, then watch ROOT and push every change until stopped.

    ROOT defaults to the configured local root and folder.

    Examples:
        blobsync -a myaccount -k KEY -C site run /srv/site
        blobsync run --workers 8 --max-retries 3
    """
    from .sync import SyncEngine

    out: OutputFormatter = ctx.obj["out"]
    extra: dict[str, Any] = {"workers": workers, "max_retries": max_retries}
    if root:
        extra.update({"local_root": root, "folder": ""})
    config = _load_config(ctx, **extra)

    if not ctx.obj["verbose"]:
        # The daemon reports what it does at INFO level
        logging.getLogger("blobsync").setLevel(logging.INFO)

    engine = SyncEngine(config)

    out.info(f"Syncing {config.watch_root} <-> {config.container}")
    engine.install_signal_handlers()
    engine.run(show_progress=not (no_progress or out.quiet or out.json_output))
    out.success("Stopped.")


@main.command()
@click.argument("root", required=False, type=click.Path(file_okay=False))
@click.pass_context
def reconcile(ctx: Any, root: Optional[str]) -> None:
    """Download container objects missing under ROOT, then exit.

    Existing local files are never overwritten or deleted.
    """
    from .sync import SyncEngine

    out: OutputFormatter = ctx.obj["out"]
    extra: dict[str, Any] = {}
    if root:
        extra.update({"local_root": root, "folder": ""})
    config = _load_config(ctx, **extra)

    engine = SyncEngine(config)

    try:
        engine.prepare()
        stats = engine.reconcile(show_progress=not (out.quiet or out.json_output))
    finally:
        engine.shutdown()

    if out.json_output:
        out.output_json(stats)
    else:
        out.print_summary(
            "Reconciliation Complete",
            [
                ("Downloaded", f"{stats['downloads']} file(s)"),
                ("Directories created", str(stats["directories"])),
                ("Skipped", f"{stats['skips']} existing"),
                ("Failed", str(stats["errors"])),
            ],
        )
    if stats["errors"]:
        ctx.exit(1)


@main.command(name="ls")
@click.option("--prefix", "-p", help="Only list blobs starting with this prefix")
@click.pass_context
def ls(ctx: Any, prefix: Optional[str]) -> None:
    """List the blobs in the container."""
    out: OutputFormatter = ctx.obj["out"]
    config = _load_config(ctx)

    try:
        with BlobClient.from_config(config) as client:
            items = list(client.list_objects(prefix=prefix))
    except BlobSyncError as e:
        out.error(str(e))
        ctx.exit(1)

    if not items and not out.json_output:
        out.warning("No blobs found")
        return

    table_data = [
        {
            "name": item.name,
            "size": item.size if out.json_output else format_size(item.size),
            "modified": item.last_modified.isoformat() if item.last_modified else "",
        }
        for item in items
    ]
    out.output_table(
        table_data,
        ["name", "size", "modified"],
        {"name": "Name", "size": "Size", "modified": "Last Modified"},
    )


@main.command(name="config")
@click.pass_context
def show_config(ctx: Any) -> None:
    """Show the effective configuration (secrets masked)."""
    out: OutputFormatter = ctx.obj["out"]
    config = _load_config(ctx)
    data = config.describe()

    if out.json_output:
        out.output_json(data)
        return

    out.output_table(
        [{"field": key, "value": value} for key, value in data.items()],
        ["field", "value"],
        {"field": "Setting", "value": "Value"},
    )


if __name__ == "__main__":
    main()
