import hashlib
import json
from typing import Any


def generate_sync_hash(
    *,
    title: str,
    content: str,
    external_updated_at: str | None,
    metadata: dict[str, Any] | None = None,
) -> str:
    """Fingerprint the fields of an item that matter for change detection."""
    hash_source = json.dumps(
        {
            "title": title,
            "content": content,
            "updated_at": external_updated_at,
            "metadata": metadata,
        },
        sort_keys=True,
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(hash_source.encode("utf-8")).hexdigest()[:16]
