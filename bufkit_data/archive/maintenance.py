"""
Archive consistency checks.

Compares the blob directory with the index and reports anything that
breaks the one-blob-per-row invariant. Nothing is deleted here; repairs
are left to the operator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable

from bufkit_data.archive.blob_store import BlobStore
from bufkit_data.database.index import Index
from bufkit_data.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class VerifyReport:
    """Result of an archive consistency check."""

    start_time: datetime
    end_time: datetime
    blob_count: int = 0
    row_count: int = 0
    orphan_blobs: list[str] = field(default_factory=list)
    missing_blobs: list[str] = field(default_factory=list)
    leaked_blobs: list[str] = field(default_factory=list)
    temp_files: list[Path] = field(default_factory=list)
    sites_without_aliases: list[int] = field(default_factory=list)
    compacted: bool = False

    @property
    def runtime_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def is_consistent(self) -> bool:
        """True when every row has a blob and every blob has a row."""
        return not (self.orphan_blobs or self.missing_blobs or self.leaked_blobs)

    def __str__(self) -> str:
        return (
            f"Archive Verification:\n"
            f"  Runtime: {self.runtime_seconds:.1f}s\n"
            f"  Blobs: {self.blob_count}\n"
            f"  Index rows: {self.row_count}\n"
            f"  Orphan blobs: {len(self.orphan_blobs)}\n"
            f"  Missing blobs: {len(self.missing_blobs)}\n"
            f"  Leaked blobs: {len(self.leaked_blobs)}\n"
            f"  Temp files: {len(self.temp_files)}\n"
            f"  Sites without ids: {len(self.sites_without_aliases)}\n"
            f"  Consistent: {'yes' if self.is_consistent else 'no'}"
        )


def verify_archive(
    index: Index,
    blobs: BlobStore,
    leaked: Iterable[str] = (),
) -> VerifyReport:
    """Cross-check the index against the blob store.

    Args:
        index: Archive index
        blobs: Archive blob store
        leaked: Blob names whose removal failed after their row was deleted

    Returns:
        VerifyReport
    """
    start = datetime.now()

    on_disk = blobs.names()
    in_index = index.file_names()
    leaked_set = set(leaked)

    # A leaked blob is an orphan we already know about; report it once.
    # Once a row claims the name again it is neither.
    still_leaked = (leaked_set & on_disk) - in_index
    orphans = sorted(on_disk - in_index - still_leaked)

    report = VerifyReport(
        start_time=start,
        end_time=start,
        blob_count=len(on_disk),
        row_count=len(in_index),
        orphan_blobs=orphans,
        missing_blobs=sorted(in_index - on_disk),
        leaked_blobs=sorted(still_leaked),
        temp_files=blobs.temp_files(),
        sites_without_aliases=index.sites_without_aliases(),
    )
    report.end_time = datetime.now()

    if report.is_consistent:
        logger.info("Archive verified", blobs=report.blob_count, rows=report.row_count)
    else:
        logger.warning(
            "Archive inconsistent",
            orphan_blobs=len(report.orphan_blobs),
            missing_blobs=len(report.missing_blobs),
            leaked_blobs=len(report.leaked_blobs),
        )
    return report
