"""Bucket key layout: `{first2(user_id)}/{first2(hash)}/{hash}/{hash}_{variant}.{ext}`.

Keys are shared with already-stored objects, so the format must not change.
"""

from __future__ import annotations

from mediavault.models.storage import ORIGINAL


def file_prefix(user_id: str, content_hash: str) -> str:
    return f"{str(user_id)[:2]}/{content_hash[:2]}/{content_hash}"


def instance_path(prefix: str, content_hash: str, variant: str, ext: str) -> str:
    return f"{prefix}/{content_hash}_{variant}.{ext.lstrip('.')}"


def original_path(prefix: str, content_hash: str, ext: str) -> str:
    return instance_path(prefix, content_hash, ORIGINAL, ext)
