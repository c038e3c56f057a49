from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping


def compute_fingerprint(attributes: Mapping[str, Any]) -> str:
    """SHA-256 over canonical JSON of fully resolved attributes.

    Key order does not matter; the same attributes always give the same
    64-character hex digest.
    """
    canonical_json = json.dumps(
        attributes,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
