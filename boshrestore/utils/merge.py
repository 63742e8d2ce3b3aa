from __future__ import annotations

import copy
from typing import Any


def deep_merge(base: Any, delta: Any) -> Any:
    """Return ``base`` with ``delta`` merged into it, without mutating either.

    Mappings merge key by key. Lists merge index by index so a delta can
    enrich individual elements without restating the rest; extra delta
    elements are appended. Any other value in ``delta`` replaces the one in
    ``base``.
    """

    if isinstance(base, dict) and isinstance(delta, dict):
        merged = {key: copy.deepcopy(value) for key, value in base.items()}
        for key, value in delta.items():
            if key in merged:
                merged[key] = deep_merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    if isinstance(base, list) and isinstance(delta, list):
        merged_list = [copy.deepcopy(item) for item in base]
        for index, value in enumerate(delta):
            if index < len(merged_list):
                merged_list[index] = deep_merge(merged_list[index], value)
            else:
                merged_list.append(copy.deepcopy(value))
        return merged_list

    return copy.deepcopy(delta)
