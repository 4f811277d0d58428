"""Remote file metadata."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class FileEntry:
    """Metadata about a single remote file or directory."""

    name: str
    size: int = 0
    mod_time: datetime | None = None
    is_dir: bool = False
