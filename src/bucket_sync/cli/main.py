"""CLI interface for syncing files to an object storage bucket."""

import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from ..core.api import BucketSyncAPI, load_config
from ..core.exceptions import BucketSyncError
from ..core.models import LookupStrategy, SyncSummary

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console(stderr=True)

EXIT_FATAL = 1
EXIT_FILES_FAILED = 2


def print_summary(summary: SyncSummary) -> None:
    """Render the run summary as a table."""
    table = Table(title="Sync Summary")
    table.add_column("Outcome", style="cyan")
    table.add_column("Files", justify="right")

    table.add_row("Uploaded", str(summary.uploaded))
    table.add_row("Skipped", str(summary.skipped))
    table.add_row("Failed", f"[red]{summary.failed}[/red]" if summary.failed else "0")
    table.add_row("Stale uploads canceled", str(summary.cleanup.canceled))
    if summary.cleanup.failed:
        table.add_row("Stale uploads not canceled", f"[red]{summary.cleanup.failed}[/red]")

    console.print(table)
    for file_name in summary.failed_files:
        console.print(f"[red]✗[/red] {file_name}")


@click.command()
@click.argument("bucket")
@click.option(
    "--state-file",
    envvar="BUCKET_SYNC_STATE_FILE",
    type=click.Path(dir_okay=False),
    help="Hash cache file (default: state.txt)",
)
@click.option(
    "--lookup",
    type=click.Choice([s.value for s in LookupStrategy], case_sensitive=False),
    envvar="BUCKET_SYNC_LOOKUP",
    help="How to check for existing objects (default: by-name)",
)
@click.option("--workers", type=int, envvar="BUCKET_SYNC_WORKERS", help="Worker pool size")
@click.option(
    "--large-file-threshold",
    type=int,
    envvar="BUCKET_SYNC_LARGE_FILE_THRESHOLD",
    help="Size in bytes at or above which multipart upload is used",
)
@click.option(
    "--part-size",
    type=int,
    envvar="BUCKET_SYNC_PART_SIZE",
    help="Multipart part size in bytes (default: auto-detected based on file size)",
)
@click.option("--endpoint-url", envvar="BUCKET_SYNC_ENDPOINT_URL", help="S3 endpoint URL")
@click.option("--region", envvar="BUCKET_SYNC_REGION", help="S3 region")
@click.option("--access-key", envvar="BUCKET_SYNC_ACCESS_KEY", help="S3 access key")
@click.option("--secret-key", envvar="BUCKET_SYNC_SECRET_KEY", help="S3 secret key")
@click.option("--max-retries", type=int, help="Maximum attempts per request")
@click.option("--shutdown-timeout", type=float, help="Seconds to let running work finish on exit")
@click.option("--shutdown-grace", type=float, help="Seconds to wait after canceling work")
@click.option(
    "--strict-state",
    is_flag=True,
    help="Fail on malformed hash cache lines instead of skipping them",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(bucket, verbose, **options):
    """Upload changed files named on stdin (one path per line) to BUCKET."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(bucket=bucket, **options)
        api = BucketSyncAPI(config)
        summary = api.sync(click.get_text_stream("stdin"))
    except BucketSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(EXIT_FATAL)

    print_summary(summary)
    if summary.failed:
        sys.exit(EXIT_FILES_FAILED)


def main():
    """Main entry point."""
    cli()
