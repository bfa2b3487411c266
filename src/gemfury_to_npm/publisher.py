"""
npm Publisher

Publishes a local tarball with the npm CLI and classifies the outcome.
"""

import re
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from gemfury_to_npm.logging_config import get_logger


logger = get_logger(__name__)

DEFAULT_PUBLISH_TIMEOUT = 300

# npm's wording for "this version is already there" varies by registry/version
CONFLICT_PATTERNS = [
    r"EPUBLISHCONFLICT",
    r"cannot publish over",
    r"previously published version",
    r"version already exists",
]


class PublishStatus(Enum):
    PUBLISHED = "published"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"


@dataclass
class PublishResult:
    status: PublishStatus
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is PublishStatus.PUBLISHED


def is_conflict(output: str) -> bool:
    """Check npm output for an already-published error."""
    return any(re.search(p, output, flags=re.IGNORECASE) for p in CONFLICT_PATTERNS)


def check_npm(npm_command: str = "npm") -> Tuple[bool, str]:
    """Check the npm CLI is installed."""
    if not shutil.which(npm_command):
        return False, f"{npm_command} not found (install Node.js from nodejs.org)"
    try:
        result = subprocess.run(
            [npm_command, "--version"],
            capture_output=True,
            text=True,
            timeout=10
        )
        if result.returncode == 0:
            version = result.stdout.strip() if result.stdout else "available"
            return True, f"npm {version}"
    except Exception as e:
        return False, f"npm check failed: {e}"
    return False, "npm --version failed"


class NpmPublisher:
    """Runs `npm publish <tarball>`."""

    def __init__(
        self,
        npm_command: str = "npm",
        registry: Optional[str] = None,
        tag: Optional[str] = None,
        access: Optional[str] = None,
        timeout: float = DEFAULT_PUBLISH_TIMEOUT
    ):
        self.npm_command = npm_command
        self.registry = registry
        self.tag = tag
        self.access = access
        self.timeout = timeout

    def build_command(self, tarball: Path) -> List[str]:
        cmd = [self.npm_command, "publish", str(tarball)]
        if self.registry:
            cmd += ["--registry", self.registry]
        if self.tag:
            cmd += ["--tag", self.tag]
        if self.access:
            cmd += ["--access", self.access]
        return cmd

    def publish(self, tarball: Path) -> PublishResult:
        """Publish one tarball. Never raises for npm-side failures."""
        cmd = self.build_command(tarball)
        logger.debug("Running: %s", " ".join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return PublishResult(PublishStatus.FAILED, f"{self.npm_command} not found")
        except subprocess.TimeoutExpired:
            return PublishResult(PublishStatus.FAILED, f"npm publish timed out after {self.timeout}s")

        if result.returncode == 0:
            return PublishResult(PublishStatus.PUBLISHED, result.stdout.strip())

        output = (result.stderr or "") + (result.stdout or "")
        if is_conflict(output):
            return PublishResult(PublishStatus.ALREADY_EXISTS, output.strip())
        return PublishResult(
            PublishStatus.FAILED,
            output.strip() or f"npm publish exited with {result.returncode}",
        )
