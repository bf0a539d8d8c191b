"""Zip/jar reading and deterministic writing.

Every archive a stage produces goes through ``write_archive`` so that the
same entries always yield the same bytes: entries are sorted, timestamps
are pinned to the zip epoch and host-dependent metadata is fixed.
"""

from __future__ import annotations

import io
import zipfile

from vanillakit.core.errors import StageInputError

ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
_FILE_MODE = 0o644 << 16
_DIR_MODE = (0o755 << 16) | 0x10

MANIFEST_PATH = "META-INF/MANIFEST.MF"


def read_entries(data: bytes, *, subject: str = "archive") -> dict[str, bytes]:
    """All entries of a zip archive, name -> bytes (directories map to ``b""``).

    Raises ``StageInputError`` when *data* is not a readable zip.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            return {info.filename: archive.read(info) for info in archive.infolist()}
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as exc:
        raise StageInputError(f"{subject} is not a readable zip archive: {exc}") from exc


def write_archive(entries: dict[str, bytes]) -> bytes:
    """Serialise *entries* into a byte-for-byte reproducible zip."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name in sorted(entries):
            info = zipfile.ZipInfo(name, date_time=ZIP_EPOCH)
            info.create_system = 3
            if name.endswith("/"):
                info.external_attr = _DIR_MODE
                info.compress_type = zipfile.ZIP_STORED
            else:
                info.external_attr = _FILE_MODE
                info.compress_type = zipfile.ZIP_DEFLATED
            archive.writestr(info, entries[name])
    return buffer.getvalue()


def is_signature_file(name: str) -> bool:
    """Jar signature material that renaming classes would invalidate."""
    upper = name.upper()
    if not upper.startswith("META-INF/") or "/" in upper[len("META-INF/"):]:
        return False
    return upper.endswith((".SF", ".RSA", ".DSA", ".EC"))


def strip_manifest_digests(manifest: bytes) -> bytes:
    """Keep only the main section of a MANIFEST.MF (drops per-entry digests)."""
    text = manifest.decode("utf-8", "replace").replace("\r\n", "\n")
    main, _, _ = text.partition("\n\n")
    return (main.rstrip("\n") + "\n\n").replace("\n", "\r\n").encode("utf-8")
