"""Current user selection tracked by the coordinator."""

from dataclasses import dataclass

from logscout.models.files import FileEntry
from logscout.models.target import LogFolder, Target


@dataclass(frozen=True)
class Selection:
    """Snapshot of the server -> folder -> file selection.

    ``epoch`` changes whenever the server or folder changes, ``file_epoch``
    whenever anything changes (including file selection and tail stop).
    Background work compares the snapshot it started with against the
    coordinator's current one before publishing.
    """

    server: Target | None = None
    folder: LogFolder | None = None
    file: FileEntry | None = None
    epoch: int = 0
    file_epoch: int = 0

    def same_listing(self, other: "Selection") -> bool:
        """Whether a listing started for self is still relevant under other."""
        return self.epoch == other.epoch

    def same_file(self, other: "Selection") -> bool:
        """Whether file content started for self is still relevant under other."""
        return self.epoch == other.epoch and self.file_epoch == other.file_epoch
