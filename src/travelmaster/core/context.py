"""
Shared context - the cross-worker state bag.

Values are a small tagged union: str, int/float, bool, or a nested map of
the same. Typed accessors keep merge and extraction logic honest about what
they read.
"""

import copy
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple, Union

ContextValue = Union[str, int, float, bool, Dict[str, Any]]

DEFAULT_EPHEMERAL_PREFIXES: Tuple[str, ...] = ("last_",)


def _check_value(key: str, value: Any) -> None:
    if isinstance(value, (str, bool, int, float)):
        return
    if isinstance(value, dict):
        for sub_key, sub_value in value.items():
            if not isinstance(sub_key, str):
                raise TypeError(f"Context map '{key}' has non-string key {sub_key!r}")
            _check_value(f"{key}.{sub_key}", sub_value)
        return
    raise TypeError(f"Unsupported context value for '{key}': {type(value).__name__}")


class SharedContext:
    """
    String-keyed map of ContextValue.

    Instances are passed by value: `snapshot()` returns an independent copy
    and `merge()` copies the values it takes.
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, ContextValue] = {}
        if values:
            for key, value in values.items():
                self.set(key, value)

    def set(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key:
            raise TypeError("Context keys must be non-empty strings")
        _check_value(key, value)
        self._values[key] = copy.deepcopy(value)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def get_str(self, key: str) -> Optional[str]:
        value = self._values.get(key)
        return value if isinstance(value, str) else None

    def get_number(self, key: str) -> Optional[float]:
        value = self._values.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def get_bool(self, key: str) -> Optional[bool]:
        value = self._values.get(key)
        return value if isinstance(value, bool) else None

    def get_map(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._values.get(key)
        return copy.deepcopy(value) if isinstance(value, dict) else None

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def clear(self) -> None:
        self._values.clear()

    def keys_with_prefix(self, prefix: str) -> Iterator[str]:
        return (k for k in list(self._values) if k.startswith(prefix))

    def merge(
        self,
        other: "SharedContext",
        exclude_prefixes: Iterable[str] = DEFAULT_EPHEMERAL_PREFIXES,
    ) -> int:
        """
        Copy every non-ephemeral key of `other` into this context.

        Returns:
            Number of keys merged
        """
        prefixes = tuple(exclude_prefixes)
        merged = 0
        for key, value in other.items():
            if prefixes and key.startswith(prefixes):
                continue
            self._values[key] = copy.deepcopy(value)
            merged += 1
        return merged

    def diff(self, baseline: "SharedContext") -> "SharedContext":
        """Keys that are new or changed relative to `baseline`."""
        changed = SharedContext()
        for key, value in self._values.items():
            if key not in baseline or baseline.get(key) != value:
                changed._values[key] = copy.deepcopy(value)
        return changed

    def snapshot(self) -> "SharedContext":
        return SharedContext(self._values)

    def items(self) -> Iterator[Tuple[str, ContextValue]]:
        return iter(list(self._values.items()))

    def to_dict(self) -> Dict[str, ContextValue]:
        return copy.deepcopy(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"SharedContext({sorted(self._values)})"
