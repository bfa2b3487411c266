"""
Migration Orchestrator

Drives the module loop and the version loop:

    list modules
      for each module:   fetch source metadata -> fetch npm versions -> diff
        for each pending version:   download -> rewrite -> publish

Everything runs strictly one step at a time. A failure ends only the version
or module it happened in; only a failed module listing ends the run.
"""

import re
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Set

from gemfury_to_npm.archive import rewrite_archive
from gemfury_to_npm.differ import pending_versions, skipped_versions
from gemfury_to_npm.events import (
    ModuleDone,
    ModuleStarted,
    ProgressUpdate,
    Reporter,
    RunFinished,
    RunStarted,
    VersionSkipped,
    WarningRaised,
    null_reporter,
)
from gemfury_to_npm.exceptions import (
    MalformedManifest,
    MigrationError,
    NotFoundError,
    PublishConflict,
    PublishError,
)
from gemfury_to_npm.logging_config import get_logger
from gemfury_to_npm.manifest import MANIFEST_FILENAME
from gemfury_to_npm.publisher import PublishStatus
from gemfury_to_npm.registries import VersionRef


logger = get_logger(__name__)

# Share of a module's progress bar used by the fetch/diff steps
FETCH_SHARE = 0.1
VERSIONS_SHARE = 0.85


class ModuleState(Enum):
    LISTING = "listing"
    DIFFING = "diffing"
    DOWNLOADING = "downloading"
    REWRITING = "rewriting"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


class VersionOutcome(Enum):
    PUBLISHED = "published"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"
    PENDING = "pending"  # dry run


@dataclass
class VersionResult:
    version: str
    outcome: VersionOutcome
    message: str = ""


@dataclass
class ModuleSummary:
    """What happened to one module during this run."""
    name: str
    state: ModuleState = ModuleState.LISTING
    versions: List[VersionResult] = field(default_factory=list)
    present: List[str] = field(default_factory=list)  # already on npm before the run
    error: Optional[str] = None

    def _count(self, outcome: VersionOutcome) -> int:
        return sum(1 for v in self.versions if v.outcome is outcome)

    @property
    def published_count(self) -> int:
        return self._count(VersionOutcome.PUBLISHED)

    @property
    def failed_count(self) -> int:
        return self._count(VersionOutcome.FAILED)

    @property
    def skipped_count(self) -> int:
        return len(self.present) + self._count(VersionOutcome.ALREADY_EXISTS)

    @property
    def pending(self) -> List[str]:
        return [v.version for v in self.versions if v.outcome is VersionOutcome.PENDING]

    @property
    def ok(self) -> bool:
        return self.state is ModuleState.DONE and self.failed_count == 0

    def to_event(self) -> ModuleDone:
        return ModuleDone(
            module=self.name,
            published_count=self.published_count,
            failed_count=self.failed_count,
            skipped_count=self.skipped_count,
            error=self.error,
        )


@dataclass
class RunSummary:
    modules: List[ModuleSummary] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(m.ok for m in self.modules)

    @property
    def failed_modules(self) -> List[str]:
        return [m.name for m in self.modules if m.state is ModuleState.FAILED]


def describe(error: MigrationError) -> str:
    """One-line description: message plus technical details."""
    if error.details:
        return f"{error.message}: {error.details}"
    return error.message


def archive_filename(module: str, version: str) -> str:
    """Filesystem-safe tarball name for a module version."""
    safe = re.sub(r"[^A-Za-z0-9._-]+", "-", f"{module.lstrip('@')}-{version}")
    return f"{safe}.tgz"


class Migrator:
    """Migrates every missing version of every source module."""

    def __init__(
        self,
        source,
        destination,
        publisher,
        reporter: Reporter = null_reporter,
        *,
        compress: bool = True,
        dry_run: bool = False,
        modules: Optional[Sequence[str]] = None,
        workdir: Optional[Path] = None,
        manifest_name: str = MANIFEST_FILENAME
    ):
        """Initialize the migrator.

        Args:
            source: Provides list_modules(), fetch_metadata(), open_archive()
            destination: Provides fetch_versions()
            publisher: Provides publish(path) -> PublishResult
            reporter: Receives status events
            compress: Gzip the rewritten tarball
            dry_run: Only report pending versions
            modules: Restrict the run to these module names
            workdir: Parent directory for temporary tarballs
            manifest_name: Base filename of the manifest inside tarballs
        """
        self.source = source
        self.destination = destination
        self.publisher = publisher
        self.reporter = reporter
        self.compress = compress
        self.dry_run = dry_run
        self.modules = list(modules) if modules else []
        self.workdir = workdir
        self.manifest_name = manifest_name

    def run(self) -> RunSummary:
        """Run the migration.

        Raises:
            ListingError: The module list could not be fetched
        """
        names = self.source.list_modules()
        if self.modules:
            wanted = set(self.modules)
            missing = [m for m in self.modules if m not in names]
            names = [n for n in names if n in wanted]
            for name in missing:
                self._warn(f"{name} is not on the source registry", module=name)

        summary = RunSummary()
        self.reporter(RunStarted(len(names)))

        for index, name in enumerate(names, 1):
            self.reporter(ModuleStarted(index, len(names), name))
            module = self.migrate_module(name)
            summary.modules.append(module)
            self.reporter(module.to_event())

        self.reporter(RunFinished([m.to_event() for m in summary.modules]))
        return summary

    def migrate_module(self, name: str) -> ModuleSummary:
        """Diff one module and migrate its pending versions."""
        module = ModuleSummary(name=name)

        try:
            self._progress(module, "Gemfury Fetch", 0.0)
            source = self.source.fetch_metadata(name)

            module.state = ModuleState.DIFFING
            self._progress(module, "npm Fetch", FETCH_SHARE / 2)
            existing = self._destination_versions(name)
        except MigrationError as e:
            module.state = ModuleState.FAILED
            module.error = e.message
            logger.debug("Module %s failed: %s", name, e)
            self._warn(f"{name}: {describe(e)}", module=name)
            return module
        except Exception as e:
            logger.exception("Unexpected error fetching %s", name)
            module.state = ModuleState.FAILED
            module.error = str(e) or type(e).__name__
            self._warn(f"{name}: {module.error}", module=name)
            return module

        module.present = skipped_versions(source.versions, existing)
        for version in module.present:
            self.reporter(VersionSkipped(name, version, "already exists on npm"))

        pending = pending_versions(source.versions, existing)
        for i, version in enumerate(pending):
            self._progress(module, version, FETCH_SHARE + VERSIONS_SHARE * i / len(pending))
            module.versions.append(self.migrate_version(module, source.versions[version]))

        module.state = ModuleState.DONE
        self._progress(module, "", 1.0)
        return module

    def _destination_versions(self, name: str) -> Set[str]:
        try:
            return self.destination.fetch_versions(name)
        except NotFoundError:
            logger.debug("%s not on destination yet", name)
            return set()

    def migrate_version(self, module: ModuleSummary, ref: VersionRef) -> VersionResult:
        """Download, rewrite and publish one version; never raises MigrationError."""
        label = f"{module.name}@{ref.version}"

        if self.dry_run:
            return VersionResult(ref.version, VersionOutcome.PENDING)

        try:
            with self.scoped_archive(module.name, ref.version) as path:
                self._rewrite(module, ref, path)
                module.state = ModuleState.PUBLISHING
                message = self._publish(module.name, ref.version, path)
        except PublishConflict:
            self._warn(
                f"Skipping {label} because it already exists on npm.",
                module=module.name, version=ref.version,
            )
            return VersionResult(ref.version, VersionOutcome.ALREADY_EXISTS)
        except MigrationError as e:
            self._warn(f"{label}: {describe(e)}", module=module.name, version=ref.version)
            return VersionResult(ref.version, VersionOutcome.FAILED, e.message)
        except Exception as e:
            logger.exception("Unexpected error migrating %s", label)
            self._warn(f"{label}: {e}", module=module.name, version=ref.version)
            return VersionResult(ref.version, VersionOutcome.FAILED, str(e))

        logger.info("Published %s", label)
        return VersionResult(ref.version, VersionOutcome.PUBLISHED, message)

    def _rewrite(self, module: ModuleSummary, ref: VersionRef, path: Path):
        module.state = ModuleState.DOWNLOADING
        with self.source.open_archive(ref.tarball_url) as stream, open(path, "wb") as out:
            module.state = ModuleState.REWRITING
            result = rewrite_archive(
                stream, out, compress=self.compress, manifest_name=self.manifest_name
            )

        if not result.has_manifest:
            raise MalformedManifest(
                f"No {self.manifest_name} in archive ({result.entries} entries)",
                entry=self.manifest_name,
            )

        manifest_version = result.manifest.get("version")
        if manifest_version != ref.version:
            self._warn(
                f"{module.name}@{ref.version}: {result.manifest_name} says version {manifest_version}",
                module=module.name, version=ref.version,
            )

    def _publish(self, name: str, version: str, path: Path) -> str:
        result = self.publisher.publish(path)
        if result.status is PublishStatus.ALREADY_EXISTS:
            raise PublishConflict(
                f"{name}@{version} already exists", module=name, version=version,
                details=result.message,
            )
        if result.status is not PublishStatus.PUBLISHED:
            raise PublishError(
                f"npm publish failed for {name}@{version}", module=name, version=version,
                details=result.message,
            )
        return result.message

    @contextmanager
    def scoped_archive(self, module: str, version: str) -> Iterator[Path]:
        """Private temporary path for one version's tarball.

        The directory is removed on every exit, including KeyboardInterrupt.
        """
        with tempfile.TemporaryDirectory(prefix="gemfury-to-npm-", dir=self.workdir) as tmp_dir:
            yield Path(tmp_dir) / archive_filename(module, version)

    def _progress(self, module: ModuleSummary, stage: str, fraction: float):
        self.reporter(ProgressUpdate(module.name, stage, fraction))

    def _warn(self, message: str, module: Optional[str] = None, version: Optional[str] = None):
        self.reporter(WarningRaised(message, module=module, version=version))
