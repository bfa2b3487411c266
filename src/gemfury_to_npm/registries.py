"""
Registry Clients

Thin requests-based clients for the two registries:
  - GemfurySource: lists modules, reads version metadata, streams tarballs
  - NpmRegistry: reads the versions already published on npm
"""

import io
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set
from urllib.parse import quote

import requests

from gemfury_to_npm.exceptions import (
    DownloadError,
    ListingError,
    ModuleFetchError,
    NotFoundError,
)
from gemfury_to_npm.logging_config import get_logger


logger = get_logger(__name__)

GEMFURY_URL = "https://npm.fury.io"
NPM_REGISTRY_URL = "https://registry.npmjs.org"
DEFAULT_TIMEOUT = 30
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class VersionRef:
    """One published version and where its tarball lives."""
    version: str
    tarball_url: str


@dataclass
class SourceModule:
    """Source-side view of a module; versions keep publish order."""
    name: str
    versions: "OrderedDict[str, VersionRef]" = field(default_factory=OrderedDict)


def encode_package_name(name: str) -> str:
    """URL-encode a package name; scoped names keep the leading '@'."""
    if name.startswith("@"):
        return "@" + quote(name[1:], safe="")
    return quote(name, safe="")


class ResponseStream(io.RawIOBase):
    """Read-only file object over a streamed requests response.

    Transport errors raised while reading surface as DownloadError.
    """

    def __init__(self, response: requests.Response, chunk_size: int = CHUNK_SIZE):
        self._response = response
        self._chunks = response.iter_content(chunk_size=chunk_size)
        self._buffer = b""
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if not self._buffer:
            try:
                self._buffer = next(self._chunks, b"")
            except requests.RequestException as e:
                raise DownloadError(
                    "Connection lost while downloading archive",
                    url=self._response.url,
                    details=str(e),
                )
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        self._buffer = self._buffer[n:]
        self.bytes_read += n
        return n

    def close(self):
        if not self.closed:
            self._response.close()
        super().close()


class GemfurySource:
    """Gemfury npm endpoint (the migration source)."""

    def __init__(
        self,
        user: str,
        api_key: str,
        base_url: str = GEMFURY_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.user = user
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def account_url(self) -> str:
        return f"{self.base_url}/{self.api_key}/{self.user}"

    def _get_json(self, url: str, resource: str) -> Any:
        resp = self.session.get(url, timeout=self.timeout, headers={"Accept": "application/json"})
        if resp.status_code == 404:
            # url carries the api key; name the resource instead
            raise NotFoundError(f"Not found on Gemfury: {resource}", resource=resource)
        resp.raise_for_status()
        return resp.json()

    def list_modules(self) -> List[str]:
        """Names of all modules on the account, in listing order."""
        try:
            body = self._get_json(self.account_url, resource=self.user)
        except (NotFoundError, requests.RequestException, ValueError) as e:
            raise ListingError(
                f"Could not list modules for Gemfury user '{self.user}'",
                details=str(e),
            )

        if not isinstance(body, list):
            raise ListingError(
                "Unexpected module listing from Gemfury",
                details=f"expected a JSON list, got {type(body).__name__}",
            )

        names = []
        for item in body:
            name = item.get("name") if isinstance(item, dict) else item
            if isinstance(name, str) and name:
                names.append(name)
        return names

    def fetch_metadata(self, name: str) -> SourceModule:
        """Version metadata for one module.

        Raises:
            NotFoundError: Module does not exist at the source
            ModuleFetchError: Any other fetch or format failure
        """
        url = f"{self.account_url}/{encode_package_name(name)}"
        try:
            body = self._get_json(url, resource=name)
        except (requests.RequestException, ValueError) as e:
            raise ModuleFetchError(
                f"Could not fetch Gemfury metadata for {name}",
                module=name,
                details=str(e),
            )

        versions = body.get("versions") if isinstance(body, dict) else None
        if not isinstance(versions, dict):
            raise ModuleFetchError(
                f"Gemfury metadata for {name} has no versions",
                module=name,
            )

        module = SourceModule(name=name)
        for version, info in versions.items():
            if not isinstance(info, dict):
                raise ModuleFetchError(
                    f"Gemfury metadata for {name}@{version} is not an object",
                    module=name,
                    details=f"got {type(info).__name__}",
                )
            dist = info.get("dist")
            if dist is None:
                dist = {}
            if not isinstance(dist, dict):
                raise ModuleFetchError(
                    f"Gemfury metadata for {name}@{version} has a malformed dist field",
                    module=name,
                    details=f"got {type(dist).__name__}",
                )
            tarball = dist.get("tarball")
            if not tarball:
                logger.warning("%s@%s has no tarball URL, ignoring", name, version)
                continue
            if not isinstance(tarball, str):
                raise ModuleFetchError(
                    f"Gemfury metadata for {name}@{version} has a malformed tarball URL",
                    module=name,
                    details=f"got {type(tarball).__name__}",
                )
            module.versions[version] = VersionRef(version=version, tarball_url=tarball)
        return module

    @contextmanager
    def open_archive(self, url: str) -> Iterator[io.BufferedReader]:
        """Stream a tarball; the response is closed on exit."""
        try:
            resp = self.session.get(url, stream=True, timeout=self.timeout, allow_redirects=True)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise DownloadError("Download failed", url=url, details=str(e))

        # buffered so short network chunks never look like short reads
        stream = io.BufferedReader(ResponseStream(resp), CHUNK_SIZE)
        try:
            yield stream
        finally:
            stream.close()


class NpmRegistry:
    """npm registry (the migration destination), read side."""

    def __init__(
        self,
        registry_url: str = NPM_REGISTRY_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.registry_url = registry_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_versions(self, name: str) -> Set[str]:
        """Versions already published.

        Raises:
            NotFoundError: Module was never published here
            ModuleFetchError: Any other fetch failure
        """
        url = f"{self.registry_url}/{encode_package_name(name)}"
        try:
            resp = self.session.get(
                url,
                timeout=self.timeout,
                # abbreviated metadata is enough for the version list
                headers={"Accept": "application/vnd.npm.install-v1+json"},
            )
            if resp.status_code == 404:
                raise NotFoundError(f"{name} is not on {self.registry_url}", resource=name)
            resp.raise_for_status()
            body: Dict[str, Any] = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise ModuleFetchError(
                f"Could not fetch npm versions for {name}",
                module=name,
                details=str(e),
            )

        if not isinstance(body, dict):
            raise ModuleFetchError(
                f"Unexpected npm metadata for {name}",
                module=name,
                details=f"expected a JSON object, got {type(body).__name__}",
            )
        versions = body.get("versions")
        if versions is None:
            return set()
        if not isinstance(versions, dict):
            raise ModuleFetchError(
                f"Unexpected npm metadata for {name}",
                module=name,
                details=f"versions is a {type(versions).__name__}, not an object",
            )
        return set(versions.keys())
