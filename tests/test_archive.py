"""Tests for the streaming archive rewriter."""

import io
import json
import tarfile

import pytest

from conftest import build_tarball, manifest_bytes, read_tarball


HEADER_FIELDS = ("name", "size", "mode", "mtime", "type", "linkname", "uid", "gid", "uname", "gname")


def header(member):
    return {f: getattr(member, f) for f in HEADER_FIELDS}


def rewrite(data, **kwargs):
    from gemfury_to_npm.archive import rewrite_archive

    out = io.BytesIO()
    result = rewrite_archive(io.BytesIO(data), out, **kwargs)
    return result, out.getvalue()


def raw_entries(data):
    """Map entry name to its raw header and payload blocks in a plain tar."""
    blocks = {}
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
        for member in tar:
            padded = -(-member.size // tarfile.BLOCKSIZE) * tarfile.BLOCKSIZE
            blocks[member.name] = data[member.offset:member.offset_data + padded]
    return blocks


class TestPassThrough:
    """Entries other than the manifest are copied unchanged."""

    def test_entry_count_and_order(self, package_files):
        """Output has the same entries in the same order."""
        source = build_tarball(package_files)
        result, output = rewrite(source)

        before = [m.name for m, _ in read_tarball(source)]
        after = [m.name for m, _ in read_tarball(output)]
        assert after == before
        assert result.entries == len(before)

    def test_non_manifest_entries_identical(self, package_files):
        """Headers and payloads of other entries are preserved."""
        source = build_tarball(package_files)
        _, output = rewrite(source)

        for (src, src_data), (dst, dst_data) in zip(read_tarball(source), read_tarball(output)):
            if src.name == "package/package.json":
                continue
            assert header(dst) == header(src)
            assert dst_data == src_data

    @pytest.mark.parametrize("fmt", [tarfile.USTAR_FORMAT, tarfile.GNU_FORMAT, tarfile.PAX_FORMAT])
    def test_raw_header_blocks_identical(self, package_files, fmt):
        """Other entries keep their exact header and payload bytes."""
        long_name = "package/" + "nested/" * 16 + "deep.js"
        source = build_tarball(package_files + [(long_name, "x")], compress=False, fmt=fmt)
        _, output = rewrite(source, compress=False)

        before = raw_entries(source)
        after = raw_entries(output)
        assert list(after) == list(before)
        for name, blocks in before.items():
            if name == "package/package.json":
                continue
            assert after[name] == blocks, name

    def test_gnu_input_stays_gnu(self, package_files):
        """The GNU magic survives, so header checksums are unchanged."""
        source = build_tarball(package_files, compress=False, fmt=tarfile.GNU_FORMAT)
        _, output = rewrite(source, compress=False)

        assert output[257:265] == tarfile.GNU_MAGIC
        assert output[148:156] == source[148:156]

    def test_symlink_preserved(self, package_files):
        """Link entries keep their target."""
        _, output = rewrite(build_tarball(package_files))

        links = [m for m, _ in read_tarball(output) if m.issym()]
        assert len(links) == 1
        assert links[0].linkname == "lib/index.js"

    def test_large_entry_copied(self, noise):
        """Entries bigger than the copy buffer survive intact."""
        blob = noise(300 * 1024)
        source = build_tarball([
            ("package/package.json", manifest_bytes()),
            ("package/big.bin", blob),
        ])
        _, output = rewrite(source)

        entries = dict((m.name, data) for m, data in read_tarball(output))
        assert entries["package/big.bin"] == blob


class TestManifestRewrite:
    """The manifest entry is sanitized and resized."""

    def test_manifest_sanitized(self, package_files):
        """private and scripts.prepublish are gone, other scripts stay."""
        result, output = rewrite(build_tarball(package_files))

        entries = dict((m.name, data) for m, data in read_tarball(output))
        manifest = json.loads(entries["package/package.json"])
        assert "private" not in manifest
        assert manifest["scripts"] == {"test": "jest"}
        assert manifest["name"] == "acme-widgets"
        assert result.manifest_name == "package/package.json"
        assert result.manifest == manifest

    def test_size_matches_payload(self, package_files):
        """The rewritten header size equals the new payload length."""
        _, output = rewrite(build_tarball(package_files))

        for member, data in read_tarball(output):
            if member.name == "package/package.json":
                assert member.size == len(data)
                break
        else:
            pytest.fail("manifest entry missing")

    def test_manifest_header_fields_preserved(self, package_files):
        """Only size changes on the manifest header."""
        source = build_tarball(package_files)
        _, output = rewrite(source)

        src = next(m for m, _ in read_tarball(source) if m.name == "package/package.json")
        dst = next(m for m, _ in read_tarball(output) if m.name == "package/package.json")
        expected = header(src)
        expected["size"] = dst.size
        assert header(dst) == expected

    def test_payload_is_stable_two_space_json(self):
        """Serialization is deterministic and npm-style."""
        from gemfury_to_npm.manifest import serialize_manifest

        source = build_tarball([("package/package.json", manifest_bytes(description="Widgets ✓"))])
        _, first = rewrite(source)
        _, second = rewrite(source)

        payload_1 = read_tarball(first)[0][1]
        payload_2 = read_tarball(second)[0][1]
        assert payload_1 == payload_2
        assert payload_1 == serialize_manifest(json.loads(manifest_bytes(description="Widgets ✓")))
        assert b'\n  "version": "1.0.0"' in payload_1
        assert "Widgets ✓".encode("utf-8") in payload_1

    def test_matches_by_basename_only(self):
        """A manifest at any depth is found; lookalike names are not."""
        source = build_tarball([
            ("pkg/package.json.bak", "not json"),
            ("some/deep/path/package.json", manifest_bytes(private=True)),
        ])
        result, output = rewrite(source)

        assert result.manifest_name == "some/deep/path/package.json"
        entries = dict((m.name, data) for m, data in read_tarball(output))
        assert entries["pkg/package.json.bak"] == b"not json"

    def test_only_first_manifest_rewritten(self):
        """Later same-named entries, e.g. bundled deps, pass through."""
        bundled = manifest_bytes(name="dep", private=True)
        source = build_tarball([
            ("package/package.json", manifest_bytes(private=True)),
            ("package/node_modules/dep/package.json", bundled),
        ])
        result, output = rewrite(source)

        entries = dict((m.name, data) for m, data in read_tarball(output))
        assert "private" not in json.loads(entries["package/package.json"])
        assert entries["package/node_modules/dep/package.json"] == bundled
        assert result.manifest_name == "package/package.json"

    def test_no_manifest(self):
        """An archive without a manifest is copied and reported."""
        result, output = rewrite(build_tarball([("package/index.js", "x")]))

        assert result.has_manifest is False
        assert result.entries == 1
        assert len(read_tarball(output)) == 1

    def test_custom_transform(self):
        """The transform hook replaces the default sanitizer."""
        def add_field(manifest):
            manifest["migrated"] = True
            return manifest

        result, _ = rewrite(
            build_tarball([("package/package.json", manifest_bytes(private=True))]),
            transform=add_field,
        )
        assert result.manifest["migrated"] is True
        assert result.manifest["private"] is True


class TestCompression:
    """Output framing is an explicit choice; input framing is detected."""

    def test_gzip_output(self, package_files):
        """compress=True produces a gzipped tar."""
        _, output = rewrite(build_tarball(package_files), compress=True)

        assert output[:2] == b"\x1f\x8b"
        with tarfile.open(fileobj=io.BytesIO(output), mode="r:gz") as tar:
            assert len(tar.getmembers()) == len(package_files)

    def test_plain_tar_output(self, package_files):
        """compress=False produces an uncompressed tar."""
        _, output = rewrite(build_tarball(package_files), compress=False)

        assert output[:2] != b"\x1f\x8b"
        with tarfile.open(fileobj=io.BytesIO(output), mode="r:") as tar:
            assert len(tar.getmembers()) == len(package_files)

    def test_uncompressed_input(self, package_files):
        """A plain tar source is accepted."""
        result, output = rewrite(build_tarball(package_files, compress=False))

        assert result.has_manifest
        assert len(read_tarball(output)) == len(package_files)


class TestFailures:
    """Broken inputs raise pipeline errors."""

    def test_malformed_manifest(self):
        """Invalid JSON in the manifest raises MalformedManifest."""
        from gemfury_to_npm.exceptions import MalformedManifest

        source = build_tarball([("package/package.json", '{"name": "acme-widgets",')])
        with pytest.raises(MalformedManifest) as exc_info:
            rewrite(source)
        assert exc_info.value.entry == "package/package.json"

    def test_non_object_manifest(self):
        """A JSON array is not a manifest."""
        from gemfury_to_npm.exceptions import MalformedManifest

        with pytest.raises(MalformedManifest):
            rewrite(build_tarball([("package/package.json", "[1, 2, 3]")]))

    def test_oversized_manifest(self, monkeypatch):
        """A manifest larger than the limit is rejected before it is read."""
        from gemfury_to_npm import archive
        from gemfury_to_npm.exceptions import MalformedManifest

        monkeypatch.setattr(archive, "MAX_MANIFEST_SIZE", 16)
        source = build_tarball([("package/package.json", manifest_bytes(description="x" * 64))])
        with pytest.raises(MalformedManifest) as exc_info:
            rewrite(source)
        assert exc_info.value.entry == "package/package.json"

    def test_truncated_gzip(self, noise):
        """A download cut short is an ArchiveError, not a shorter archive."""
        from gemfury_to_npm.exceptions import ArchiveError

        source = build_tarball([
            ("package/package.json", manifest_bytes()),
            ("package/a.bin", noise(8192)),
            ("package/b.bin", noise(8192)),
        ])
        with pytest.raises(ArchiveError):
            rewrite(source[: len(source) // 2])

    def test_not_an_archive(self):
        """Random text is rejected."""
        from gemfury_to_npm.exceptions import ArchiveError

        with pytest.raises(ArchiveError):
            rewrite(b"<html>rate limited</html>" * 40)

    def test_empty_input(self):
        """An empty body is rejected."""
        from gemfury_to_npm.exceptions import ArchiveError

        with pytest.raises(ArchiveError):
            rewrite(b"")

    def test_source_errors_propagate(self, package_files):
        """Errors raised by the source stream keep their type."""
        from gemfury_to_npm.archive import rewrite_archive
        from gemfury_to_npm.exceptions import DownloadError

        data = build_tarball(package_files)

        class FlakyStream(io.RawIOBase):
            def __init__(self):
                self.sent = 0

            def readable(self):
                return True

            def readinto(self, b):
                if self.sent >= len(data) // 2:
                    raise DownloadError("Connection lost", url="https://example.test/a.tgz")
                n = min(len(b), 512)
                b[:n] = data[self.sent:self.sent + n]
                self.sent += n
                return n

        with pytest.raises(DownloadError):
            rewrite_archive(FlakyStream(), io.BytesIO())
