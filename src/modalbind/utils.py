from __future__ import annotations

import hashlib
import json
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Mapping


def stable_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def sha1_hex(value: Any) -> str:
    payload = value if isinstance(value, str) else stable_json(value)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


def env_default(key: str, fallback: str) -> str:
    value = os.environ.get(key)
    return value if value else fallback


def atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def deep_merge(base: Any, override: Any) -> Any:
    """Merge *override* on top of *base* without mutating either.

    Mappings merge key by key and lists merge element by element; any other
    pairing lets *override* replace *base*.
    """
    if isinstance(base, Mapping) and isinstance(override, Mapping):
        merged = deepcopy(dict(base))
        for key, value in override.items():
            key_s = str(key)
            if key_s in merged:
                merged[key_s] = deep_merge(merged[key_s], value)
            else:
                merged[key_s] = deepcopy(value)
        return merged
    if isinstance(base, list) and isinstance(override, list):
        merged_list = [deepcopy(item) for item in base]
        for index, value in enumerate(override):
            if index < len(merged_list):
                merged_list[index] = deep_merge(merged_list[index], value)
            else:
                merged_list.append(deepcopy(value))
        return merged_list
    return deepcopy(override)
