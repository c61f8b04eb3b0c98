"""Deterministic identifiers derived from semantic inputs.

Every domain row id is a pure function of the strings that describe it, so
re-ingesting the same input, re-declaring the same binding or re-planning
the same work lands on the same primary key instead of a duplicate row.
"""

from __future__ import annotations

import hashlib

ID_WIDTH = 16  # hex chars (64-bit digest)


def derive_id(*parts: str) -> str:
    """Return a fixed-width hex id for the ordered tuple *parts*.

    Each part is length-prefixed before hashing so that ``("ab", "c")`` and
    ``("a", "bc")`` produce different ids.
    """
    h = hashlib.blake2b(digest_size=ID_WIDTH // 2)
    for part in parts:
        data = part.encode("utf-8")
        h.update(len(data).to_bytes(8, "big"))
        h.update(data)
    return h.hexdigest()


def content_id(corpus: str, text: str) -> str:
    return derive_id(corpus, text)


def binding_id(corpus: str, extractor_name: str, index_name: str) -> str:
    return derive_id(corpus, extractor_name, index_name)


def work_id(content: str, corpus: str, index_name: str, extractor_name: str) -> str:
    return derive_id(content, corpus, index_name, extractor_name)


def attributes_id(content: str, extractor_name: str) -> str:
    return derive_id(content, extractor_name)


def chunk_id(content: str, text: str) -> str:
    return derive_id(content, text)
