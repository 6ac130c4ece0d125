"""Programmatic API for syncing files to a bucket."""

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from pydantic import ValidationError

from .exceptions import ConfigurationError
from .models import SyncConfig, SyncSummary
from .remote import RemoteStore
from .s3_client import S3RemoteStore
from .sync import SyncOrchestrator

logger = logging.getLogger(__name__)


def load_config(**kwargs) -> SyncConfig:
    """Build a SyncConfig, dropping unset values so model defaults apply."""
    try:
        return SyncConfig(**{k: v for k, v in kwargs.items() if v is not None})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


class BucketSyncAPI:
    """High-level API for syncing local files to one bucket."""

    def __init__(self, config: SyncConfig, store: Optional[RemoteStore] = None):
        """Initialize the API.

        Args:
            config: Sync configuration
            store: Remote store to use (an S3RemoteStore built from config if None)
        """
        self.config = config
        self.store = store or S3RemoteStore(
            access_key=config.access_key,
            secret_key=config.secret_key,
            region=config.region,
            endpoint_url=config.endpoint_url,
            max_retries=config.max_retries,
            large_file_threshold=config.large_file_threshold,
            part_size=config.part_size,
        )
        # Fails fast with StartupError before any file is touched.
        self.bucket = self.store.get_bucket(config.bucket)

    def orchestrator(self) -> SyncOrchestrator:
        return SyncOrchestrator(
            self.store,
            self.bucket,
            self.config.state_file,
            lookup=self.config.lookup,
            workers=self.config.workers,
            strict_state=self.config.strict_state,
            shutdown_timeout=self.config.shutdown_timeout,
            shutdown_grace=self.config.shutdown_grace,
        )

    def sync(self, paths: Iterable[Union[str, Path]]) -> SyncSummary:
        """Upload every changed file in ``paths``.

        Args:
            paths: Local file paths; each is also the object name

        Returns:
            Counts of uploaded, skipped and failed files
        """
        return self.orchestrator().run(str(p) for p in paths)


def sync_files(
    bucket: str,
    paths: Iterable[Union[str, Path]],
    state_file: Union[str, Path] = "state.txt",
    **kwargs,
) -> SyncSummary:
    """Quick function to sync files to a bucket."""
    api = BucketSyncAPI(load_config(bucket=bucket, state_file=state_file, **kwargs))
    return api.sync(paths)
