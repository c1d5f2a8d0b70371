import os
import uuid
import logging
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


def upload_dir() -> Path:
    d = Path(os.getenv("UPLOAD_DIR", "./uploads"))
    d.mkdir(parents=True, exist_ok=True)
    return d


def save_upload(data: bytes, filename: str) -> str:
    """Persist raw upload bytes under a unique name; returns the absolute path."""
    suffix = Path(filename or "").suffix.lower()
    path = upload_dir() / f"{uuid.uuid4().hex}{suffix}"
    path.write_bytes(data)
    return str(path.resolve())


def local_uri(path: str) -> str:
    return Path(path).resolve().as_uri()


def remove_file(path: str) -> bool:
    """Best-effort delete. A file that is already gone is not an error."""
    if not path:
        return False
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        logger.info("files: %s already removed", path)
    except OSError as e:
        logger.warning("files: could not remove %s: %s", path, e)
    return False


def remove_files(paths: Iterable[str]) -> int:
    return sum(1 for p in paths if remove_file(p))
