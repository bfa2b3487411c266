"""Shared fixtures: in-memory package tarballs."""

import io
import json
import random
import tarfile

import pytest


MTIME = 499162500  # npm pack's fixed timestamp


def build_tarball(files, compress=True, fmt=tarfile.USTAR_FORMAT):
    """Build a tarball from (name, data) pairs.

    data is bytes/str for a regular file, None for a directory, or a
    TarInfo-ready dict {"type": ..., "linkname": ...} for links.
    """
    buf = io.BytesIO()
    mode = "w:gz" if compress else "w"
    with tarfile.open(fileobj=buf, mode=mode, format=fmt) as tar:
        for name, data in files:
            info = tarfile.TarInfo(name)
            info.mtime = MTIME
            info.uid = info.gid = 0
            info.uname = info.gname = ""
            if data is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            elif isinstance(data, dict):
                info.type = data["type"]
                info.linkname = data.get("linkname", "")
                info.mode = 0o777
                tar.addfile(info)
            else:
                if isinstance(data, str):
                    data = data.encode("utf-8")
                info.size = len(data)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def read_tarball(data):
    """Return [(TarInfo, payload-or-None)] for a (gzipped) tarball."""
    entries = []
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
        for member in tar:
            payload = tar.extractfile(member).read() if member.isreg() else None
            entries.append((member, payload))
    return entries


def manifest_bytes(**fields):
    data = {"name": "acme-widgets", "version": "1.0.0"}
    data.update(fields)
    return json.dumps(data).encode("utf-8")


@pytest.fixture
def noise():
    """Incompressible bytes, deterministic per test."""
    rng = random.Random(1234)
    return lambda size: bytes(rng.getrandbits(8) for _ in range(size))


@pytest.fixture
def package_files(noise):
    """A typical npm pack layout with a private, prepublish-hooked manifest."""
    return [
        ("package/", None),
        ("package/package.json", manifest_bytes(
            private=True,
            scripts={"prepublish": "npm run build", "test": "jest"},
        )),
        ("package/index.js", "module.exports = require('./lib');\n"),
        ("package/lib/", None),
        ("package/lib/index.js", "exports.answer = 42;\n"),
        ("package/lib/blob.bin", noise(4096)),
        ("package/bin", {"type": tarfile.SYMTYPE, "linkname": "lib/index.js"}),
    ]
