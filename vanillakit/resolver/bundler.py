"""Server bundle extraction.

Newer server jars are launcher bundles: the real server jar sits inside at
``META-INF/versions/<path>``, listed in ``META-INF/versions.list`` as
``<sha256>\\t<id>\\t<path>`` lines.
"""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass

from vanillakit.core.errors import IntegrityError, StageInputError
from vanillakit.core.hasher import sha256_hex

VERSIONS_LIST = "META-INF/versions.list"
VERSIONS_DIR = "META-INF/versions/"


@dataclass(frozen=True)
class BundledEntry:
    sha256: str
    id: str
    path: str


def parse_entries_list(text: str) -> list[BundledEntry]:
    entries: list[BundledEntry] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        parts = line.split("\t")
        if len(parts) != 3:
            raise StageInputError(f"{VERSIONS_LIST}:{lineno}: expected 3 tab-separated fields")
        entries.append(BundledEntry(sha256=parts[0].lower(), id=parts[1], path=parts[2]))
    return entries


def bundled_entries(data: bytes) -> list[BundledEntry] | None:
    """Entries of a bundle, or None when *data* is a plain jar."""
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        try:
            listing = archive.read(VERSIONS_LIST)
        except KeyError:
            return None
    return parse_entries_list(listing.decode("utf-8"))


def extract_server_jar(data: bytes) -> tuple[bytes, BundledEntry | None]:
    """Return the inner server jar of a bundle, or *data* itself if not bundled.

    The inner jar is verified against its listed sha256.
    """
    entries = bundled_entries(data)
    if entries is None:
        return data, None
    if len(entries) != 1:
        raise StageInputError(
            f"Expected exactly one bundled version, found {len(entries)}"
        )
    entry = entries[0]
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        try:
            inner = archive.read(VERSIONS_DIR + entry.path)
        except KeyError:
            raise StageInputError(
                f"Bundle lists {entry.path!r} but does not contain it"
            ) from None
    actual = sha256_hex(inner)
    if actual != entry.sha256:
        raise IntegrityError(VERSIONS_DIR + entry.path, f"sha256:{entry.sha256}", f"sha256:{actual}")
    return inner, entry
