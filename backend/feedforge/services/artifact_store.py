"""Filesystem store for generated feed files.

Layout: ``<artifact_dir>/<feed_id>/<run_id>.<ext>``. Writes go to a temp file
in the same directory and are renamed into place, so a reader never sees a
partial artifact. Older artifacts beyond the retention count are rotated out.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from feedforge.config import get_settings
from feedforge.errors import ArtifactNotFound, StorageError

logger = logging.getLogger(__name__)


@dataclass
class StoredArtifact:
    ref: str
    size_bytes: int


class ArtifactStore:
    def __init__(self, root: Optional[str] = None, retention: Optional[int] = None):
        settings = get_settings()
        self.root = Path(root or settings.artifact_dir)
        self.retention = retention if retention is not None else settings.artifact_retention

    def _feed_dir(self, feed_id: str) -> Path:
        return self.root / feed_id

    def _resolve(self, ref: str) -> Path:
        path = (self.root / ref).resolve()
        if self.root.resolve() not in path.parents:
            raise ArtifactNotFound(f"Artifact reference outside store: {ref}")
        return path

    def save(self, feed_id: str, run_id: int, extension: str, chunks: Iterable[bytes]) -> StoredArtifact:
        """Write chunks to a new artifact.

        Only filesystem failures are wrapped in StorageError; exceptions raised
        by the chunk iterator itself propagate unchanged after cleanup.
        """
        feed_dir = self._feed_dir(feed_id)
        final_path = feed_dir / f"{run_id}.{extension}"
        tmp_path = feed_dir / f".{run_id}.{extension}.tmp"

        try:
            feed_dir.mkdir(parents=True, exist_ok=True)
            handle = open(tmp_path, "wb")
        except OSError as e:
            raise StorageError(f"Cannot open artifact for writing: {e}") from e

        size = 0
        try:
            with handle:
                for chunk in chunks:
                    try:
                        handle.write(chunk)
                    except OSError as e:
                        raise StorageError(f"Artifact write failed: {e}") from e
                    size += len(chunk)
            try:
                os.replace(tmp_path, final_path)
            except OSError as e:
                raise StorageError(f"Artifact rename failed: {e}") from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        ref = f"{feed_id}/{final_path.name}"
        logger.info(f"Stored artifact {ref} ({size:,} bytes)")
        self._rotate(feed_dir, extension)
        return StoredArtifact(ref=ref, size_bytes=size)

    def path_for(self, ref: str) -> Path:
        path = self._resolve(ref)
        if not path.is_file():
            raise ArtifactNotFound(f"Artifact {ref} is missing")
        return path

    def read(self, ref: str) -> bytes:
        return self.path_for(ref).read_bytes()

    def _rotate(self, feed_dir: Path, extension: str):
        """Delete oldest artifacts beyond the retention count."""
        artifacts = sorted(
            (p for p in feed_dir.glob(f"*.{extension}") if p.stem.isdigit()),
            key=lambda p: int(p.stem),
        )
        while len(artifacts) > self.retention:
            oldest = artifacts.pop(0)
            try:
                oldest.unlink()
                logger.info(f"Rotated old artifact: {feed_dir.name}/{oldest.name}")
            except OSError as e:
                logger.warning(f"Could not rotate artifact {oldest}: {e}")
