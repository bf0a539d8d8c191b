"""Canonical hashing helpers for content addressing and cache-key derivation."""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO

_CHUNK_SIZE = 1 << 16


class HashAlgorithm(str, Enum):
    """Digest algorithms a manifest may declare for an artifact."""

    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA512 = "sha512"

    def new(self) -> "hashlib._Hash":
        """Return a fresh incremental hash object for this algorithm."""
        return hashlib.new(self.value)

    def hexdigest(self, data: bytes) -> str:
        """Hex digest of raw bytes."""
        digest = self.new()
        digest.update(data)
        return digest.hexdigest()

    def file_hexdigest(self, path: Path) -> str:
        """Hex digest of a file, read in chunks."""
        with open(path, "rb") as fp:
            return self.stream_hexdigest(fp)

    def stream_hexdigest(self, stream: BinaryIO) -> str:
        """Hex digest of a binary stream, read until EOF."""
        digest = self.new()
        for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
        return digest.hexdigest()


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: sorted keys, compact separators, ASCII."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object."""
    return sha256_hex(canonical_json_bytes(obj))


def url_fingerprint(url: str) -> str:
    """Stand-in identity for artifacts whose manifest declares no hash."""
    return f"url:{sha256_hex(url.encode('utf-8'))}"


def compute_stage_fingerprint(kind: str, revision: int, config: dict[str, Any]) -> str:
    """SHA-256 of canonical(kind + revision + output-affecting config)."""
    payload = {"kind": kind, "revision": revision, "config": config}
    return content_address(payload)


def compute_chain_fingerprint(
    upstream_chains: list[str], kind: str, stage_fingerprint: str
) -> str:
    """Fold one stage onto the ordered chains of its inputs.

    Raw artifacts have an empty chain; every stage extends the chain with
    its kind and configuration fingerprint.
    """
    payload = {
        "upstream": list(upstream_chains),
        "stage": [kind, stage_fingerprint],
    }
    return content_address(payload)


def compute_source_digest(input_key_digests: list[str]) -> str:
    """Merkle fold over the ordered cache-key digests of a stage's inputs."""
    return content_address({"inputs": list(input_key_digests)})
