import re
from typing import Any


def _snake_to_camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _camel_to_snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def convert_keys(obj: Any, direction: str) -> Any:
    """Recursively renames dict keys.

    Args:
      obj: A dict, list or scalar. Scalars are returned unchanged.
      direction: "snake_to_camel" or "camel_to_snake".
    """
    if direction == "snake_to_camel":
        convert = _snake_to_camel
    elif direction == "camel_to_snake":
        convert = _camel_to_snake
    else:
        raise ValueError(f"Unknown direction: {direction}")

    if isinstance(obj, dict):
        return {
            convert(k) if isinstance(k, str) else k: convert_keys(v, direction)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [convert_keys(item, direction) for item in obj]
    return obj
