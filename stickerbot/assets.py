import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    scanned: int = 0
    deleted: int = 0
    errors: int = 0


class AssetStore:
    """
    Temporary files shared by all chats. Names are namespaced by purpose,
    owning user and timestamp; whoever stages a file deletes it.
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, purpose: str, owner_id: int | str, extension: str) -> Path:
        ts = int(time.time() * 1000)
        return self.directory / f'{purpose}-{owner_id}-{ts}-{uuid4().hex[:6]}.{extension}'

    def stage(
        self, data: bytes, purpose: str, owner_id: int | str, extension: str = 'webp'
    ) -> Path:
        path = self.path_for(purpose, owner_id, extension)
        partial = path.with_name(path.name + '.part')
        try:
            partial.write_bytes(data)
            os.replace(partial, path)
        except OSError:
            self.delete(partial)
            raise
        logger.debug('Staged %s (%d bytes)', path.name, len(data))
        return path

    def delete(self, path: Path | str | None) -> bool:
        """Returns True if the file was removed; a missing file is not an error"""
        if not path:
            return False
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
        except OSError:
            logger.warning('Failed to delete staged file %s', path, exc_info=True)
            return False
        logger.debug('Deleted staged file %s', path)
        return True

    def delete_many(self, paths: Iterable[Path | str]) -> int:
        return sum(1 for p in list(paths) if self.delete(p))

    @contextmanager
    def staged(
        self, data: bytes, purpose: str, owner_id: int | str, extension: str = 'webp'
    ) -> Iterator[Path]:
        path = self.stage(data, purpose, owner_id, extension)
        try:
            yield path
        finally:
            self.delete(path)

    def sweep(self, max_age: float, now: float | None = None) -> SweepResult:
        """Delete files whose mtime is older than max_age seconds"""
        now = time.time() if now is None else now
        result = SweepResult()
        if not self.directory.exists():
            return result
        for entry in os.scandir(self.directory):
            if not entry.is_file():
                continue
            result.scanned += 1
            try:
                age = now - entry.stat().st_mtime
            except FileNotFoundError:
                continue
            if age <= max_age:
                continue
            if self.delete(entry.path):
                result.deleted += 1
            elif os.path.exists(entry.path):
                result.errors += 1
        logger.info(
            'Temp sweep: %d scanned, %d deleted, %d errors',
            result.scanned, result.deleted, result.errors,
        )
        return result


__all__ = ['AssetStore', 'SweepResult']
