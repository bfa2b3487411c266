"""
Package Manifest Handling

Parses, cleans and re-serializes package.json documents for republishing.
Cleaning is a deny-list: only fields known to block `npm publish` are
removed, everything else is carried over verbatim.
"""

import json
from typing import Any, Dict

from gemfury_to_npm.exceptions import MalformedManifest


MANIFEST_FILENAME = "package.json"

# Top-level flag that makes npm refuse the publish
PRIVATE_FIELD = "private"

# Lifecycle hook that would run against the extracted tarball on publish
PREPUBLISH_HOOK = "prepublish"


def sanitize(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """Remove publish-blocking fields from a manifest, in place.

    Args:
        manifest: Parsed package.json

    Returns:
        The same mapping, for chaining
    """
    manifest.pop(PRIVATE_FIELD, None)

    scripts = manifest.get("scripts")
    if isinstance(scripts, dict):
        scripts.pop(PREPUBLISH_HOOK, None)

    return manifest


def parse_manifest(payload: bytes, entry: str = MANIFEST_FILENAME) -> Dict[str, Any]:
    """Parse raw package.json bytes.

    Raises:
        MalformedManifest: payload is not UTF-8 JSON with an object at the top
    """
    try:
        data = json.loads(payload.decode("utf-8-sig"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedManifest(
            f"Could not parse {entry}",
            entry=entry,
            details=str(e),
        )

    if not isinstance(data, dict):
        raise MalformedManifest(
            f"{entry} is not a JSON object",
            entry=entry,
            details=f"top-level value is {type(data).__name__}",
        )

    return data


def serialize_manifest(manifest: Dict[str, Any]) -> bytes:
    """Serialize a manifest the way `npm` writes package.json files."""
    return json.dumps(manifest, indent=2, ensure_ascii=False).encode("utf-8")
