import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Optional

from rbin.errors import (
    GenerationExhausted,
    InvalidIdentifier,
    PasteNotFound,
    StartupFailure,
    StorageIOFailure,
)
from rbin.utils import ID_LENGTH, generate_id, is_valid_id

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 16
TEMP_PREFIX = ".rbin-"


class PasteStore:
    """Write-once paste files, one per ID, directly under ``root``.

    Content is written to a hidden temp file first and then published
    under its ID with a hard link. ``os.link`` refuses to replace an
    existing name, so the filesystem decides who owns an ID and a reader
    never sees a half-written paste.
    """

    def __init__(
        self,
        root,
        id_factory: Optional[Callable[[], str]] = None,
        id_length: int = ID_LENGTH,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.root = Path(root)
        self.id_length = id_length
        self.max_attempts = max_attempts
        self._id_factory = id_factory or (lambda: generate_id(id_length))
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Failed to create paste directory %s: %s", self.root, e)
            raise StartupFailure(f"Could not create paste directory at {self.root}: {e}") from e
        if not os.access(self.root, os.W_OK | os.X_OK):
            raise StartupFailure(f"Paste directory {self.root} is not writable")

    def path_for(self, paste_id: str) -> Path:
        if not is_valid_id(paste_id, self.id_length):
            raise InvalidIdentifier(paste_id)
        return self.root / paste_id

    def create(self, content: bytes) -> str:
        tmp_path = self._write_temp(content)
        try:
            for attempt in range(1, self.max_attempts + 1):
                paste_id = self._id_factory()
                target = self.path_for(paste_id)
                try:
                    os.link(tmp_path, target)
                except FileExistsError:
                    logger.warning(
                        "ID collision on %s (attempt %d/%d)", paste_id, attempt, self.max_attempts
                    )
                    continue
                except OSError as e:
                    logger.error("Failed to publish paste file %s: %s", target, e)
                    raise StorageIOFailure(f"Failed to save paste: {e}") from e
                try:
                    _fsync_dir(self.root)
                except OSError as e:
                    logger.error("Failed to sync paste directory %s: %s", self.root, e)
                    raise StorageIOFailure(f"Failed to save paste: {e}") from e
                logger.info("Generated ID: %s, saved %d bytes to %s", paste_id, len(content), target)
                return paste_id
        finally:
            _discard(tmp_path)

        logger.error(
            "Gave up after %d colliding IDs in %s; the ID space may be nearly full",
            self.max_attempts,
            self.root,
        )
        raise GenerationExhausted(self.max_attempts)

    def read(self, paste_id: str) -> bytes:
        path = self.path_for(paste_id)
        try:
            with open(path, "rb") as f:
                content = f.read()
        except FileNotFoundError:
            logger.warning("Paste ID not found: %s, path: %s", paste_id, path)
            raise PasteNotFound(paste_id) from None
        except OSError as e:
            logger.error("Error reading paste file %s: %s", path, e)
            raise StorageIOFailure(f"Error retrieving paste: {e}") from e
        logger.debug("Read paste %s (%d bytes)", paste_id, len(content))
        return content

    def _write_temp(self, content: bytes) -> str:
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=self.root)
        except OSError as e:
            logger.error("Failed to create temp file in %s: %s", self.root, e)
            raise StorageIOFailure(f"Failed to save paste: {e}") from e
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            # mkstemp creates 0600; pastes are plain readable files
            os.chmod(tmp_path, 0o644)
        except OSError as e:
            _discard(tmp_path)
            logger.error("Failed to write temp file %s: %s", tmp_path, e)
            raise StorageIOFailure(f"Failed to save paste: {e}") from e
        return tmp_path


def _discard(tmp_path: str) -> None:
    try:
        os.unlink(tmp_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove temp file %s: %s", tmp_path, e)


def _fsync_dir(path) -> None:
    # directory handles can't be fsynced on Windows
    if os.name != "posix":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
