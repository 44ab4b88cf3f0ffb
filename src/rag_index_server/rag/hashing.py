"""
Content fingerprints for change detection and deduplication.
"""

from __future__ import annotations

import hashlib


class ContentHasher:
    """
    Stable SHA-256 fingerprint of document text.

    No normalisation is applied: any edit, including whitespace, yields a
    different hash and therefore a re-embed.
    """

    algorithm = "sha256"

    def hash(self, text: str) -> str:
        return hashlib.new(self.algorithm, text.encode("utf-8")).hexdigest()


_default_hasher = ContentHasher()


def content_hash(text: str) -> str:
    return _default_hasher.hash(text)
