"""
Version Differ

Decides which source versions still need to be published at the destination.
"""

from typing import Iterable, List, Optional, Set


def pending_versions(
    source_versions: Iterable[str],
    dest_versions: Optional[Set[str]] = None
) -> List[str]:
    """Versions present at the source but missing at the destination.

    Args:
        source_versions: Source versions in publish order
        dest_versions: Versions already at the destination; None means the
            module has never been published there

    Returns:
        Missing versions, in source order
    """
    existing = dest_versions or set()
    return [v for v in source_versions if v not in existing]


def skipped_versions(
    source_versions: Iterable[str],
    dest_versions: Optional[Set[str]] = None
) -> List[str]:
    """Source versions the destination already has, in source order."""
    existing = dest_versions or set()
    return [v for v in source_versions if v in existing]
