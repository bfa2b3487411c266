"""
Archive Rewriter

Streams a package tarball from a readable file object to a writable one,
replacing the package manifest with a sanitized copy. Both sides are opened
in tarfile's pipe modes ("r|" / "w|gz"), so the source is never seeked and
at most one entry's header plus one copy buffer is held at a time. The
manifest itself is buffered; it is small.

Gzip framing on the input is optional and detected from the first bytes.
It is decoded with GzipFile rather than tarfile's own stream reader so that
a truncated download fails instead of looking like a shorter archive.

Headers are re-encoded from the parsed entries in the input's own flavour
(GNU when the first header carries the GNU magic, ustar or pax otherwise),
so canonically encoded headers come out byte for byte. Numeric fields that
another writer encoded differently (space terminators, base-256) are
normalized to tarfile's encoding with the same values.
"""

import copy
import gzip
import io
import posixpath
import tarfile
import zlib
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Dict, Optional

from gemfury_to_npm.exceptions import ArchiveError, MalformedManifest, MigrationError
from gemfury_to_npm.logging_config import get_logger
from gemfury_to_npm.manifest import (
    MANIFEST_FILENAME,
    parse_manifest,
    sanitize,
    serialize_manifest,
)


logger = get_logger(__name__)

Transform = Callable[[Dict[str, Any]], Dict[str, Any]]

GZIP_MAGIC = b"\x1f\x8b"
MAGIC_OFFSET = 257
MAX_MANIFEST_SIZE = 5 * 1024 * 1024


@dataclass
class RewriteResult:
    """Outcome of one archive rewrite."""
    entries: int = 0
    manifest_name: Optional[str] = None
    manifest: Optional[Dict[str, Any]] = None

    @property
    def has_manifest(self) -> bool:
        return self.manifest_name is not None


def open_source(source: BinaryIO) -> io.BufferedReader:
    """Decode optional gzip framing; the result can peek a full tar record."""
    if not hasattr(source, "peek"):
        source = io.BufferedReader(source)
    if source.peek(len(GZIP_MAGIC))[:len(GZIP_MAGIC)] == GZIP_MAGIC:
        source = gzip.GzipFile(fileobj=source, mode="rb")
    # the inner stream fills whole reads, so one peek sees the first header
    return io.BufferedReader(source, tarfile.RECORDSIZE)


def detect_format(stream: io.BufferedReader) -> int:
    """tarfile format to re-encode headers in, from the first header block."""
    head = stream.peek(tarfile.BLOCKSIZE)[:tarfile.BLOCKSIZE]
    if head[MAGIC_OFFSET:MAGIC_OFFSET + len(tarfile.GNU_MAGIC)] == tarfile.GNU_MAGIC:
        return tarfile.GNU_FORMAT
    return tarfile.PAX_FORMAT


def header_format(member: tarfile.TarInfo, archive_format: int) -> int:
    """Format for one entry's header.

    POSIX entries without extended records stay plain ustar, so no pax
    header is added for them; entries that need one are written as pax.
    """
    if archive_format == tarfile.GNU_FORMAT:
        return tarfile.GNU_FORMAT
    if member.pax_headers:
        return tarfile.PAX_FORMAT
    try:
        member.tobuf(tarfile.USTAR_FORMAT, "utf-8", "surrogateescape")
    except ValueError:
        return tarfile.PAX_FORMAT
    return tarfile.USTAR_FORMAT


def copy_entry(tar_out: tarfile.TarFile, member: tarfile.TarInfo, archive_format: int,
               fileobj: Optional[BinaryIO] = None):
    tar_out.format = header_format(member, archive_format)
    tar_out.addfile(member, fileobj)


def is_manifest_entry(member: tarfile.TarInfo, manifest_name: str = MANIFEST_FILENAME) -> bool:
    """Match on the last path component only, regular files only."""
    return member.isreg() and posixpath.basename(member.name) == manifest_name


def rewrite_archive(
    source: BinaryIO,
    destination: BinaryIO,
    *,
    compress: bool = True,
    manifest_name: str = MANIFEST_FILENAME,
    transform: Transform = sanitize,
) -> RewriteResult:
    """Copy a tarball, rewriting the first manifest entry.

    Args:
        source: Tar stream, gzip framing optional
        destination: Receives the rewritten tar stream
        compress: Write gzip framing around the output tar
        manifest_name: Base filename of the manifest entry
        transform: Applied to the parsed manifest before re-serializing

    Returns:
        RewriteResult with entry count and the rewritten manifest

    Raises:
        MalformedManifest: The manifest entry is not a JSON object
        ArchiveError: Source is not a readable (gzipped) tar stream
        MigrationError: Anything the source object raises, e.g. DownloadError
    """
    result = RewriteResult()
    out_mode = "w|gz" if compress else "w|"

    try:
        stream = open_source(source)
        archive_format = detect_format(stream)
        with tarfile.open(fileobj=stream, mode="r|") as tar_in, \
                tarfile.open(fileobj=destination, mode=out_mode,
                             format=archive_format, encoding="utf-8") as tar_out:
            for member in tar_in:
                result.entries += 1

                if result.manifest_name is None and is_manifest_entry(member, manifest_name):
                    if member.size > MAX_MANIFEST_SIZE:
                        raise MalformedManifest(
                            f"{member.name} is too large to be a package manifest",
                            entry=member.name,
                            details=f"{member.size} bytes, limit {MAX_MANIFEST_SIZE}",
                        )
                    payload = tar_in.extractfile(member).read()
                    manifest = transform(parse_manifest(payload, entry=member.name))
                    data = serialize_manifest(manifest)

                    header = copy.copy(member)
                    header.size = len(data)
                    # a stale pax size record would override the new size
                    header.pax_headers = {
                        k: v for k, v in member.pax_headers.items() if k != "size"
                    }
                    copy_entry(tar_out, header, archive_format, io.BytesIO(data))

                    result.manifest_name = member.name
                    result.manifest = manifest
                    logger.debug("Rewrote %s (%d -> %d bytes)", member.name, member.size, len(data))
                elif member.isreg():
                    copy_entry(tar_out, member, archive_format, tar_in.extractfile(member))
                else:
                    copy_entry(tar_out, member, archive_format)
    except MigrationError:
        raise
    except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
        raise ArchiveError(
            "Could not read package archive",
            details=f"{type(e).__name__}: {e}",
        )

    if result.manifest_name is None:
        logger.debug("No %s entry found in %d entries", manifest_name, result.entries)

    return result
