"""Deep merge of JSON-like mappings."""

import copy


def merge_deep(*objects: dict | None) -> dict:
    """Merge mappings left to right into a new dict.

    Nested dicts merge recursively, lists concatenate (earlier items first)
    and any other value is replaced by the later one. None arguments are
    skipped. Inputs are not modified and merged values are copies.
    """
    result: dict = {}
    for obj in objects:
        if not obj:
            continue
        for key, value in obj.items():
            prev = result.get(key)
            if isinstance(prev, list) and isinstance(value, list):
                result[key] = prev + copy.deepcopy(value)
            elif isinstance(prev, dict) and isinstance(value, dict):
                result[key] = merge_deep(prev, value)
            else:
                result[key] = copy.deepcopy(value)
    return result
