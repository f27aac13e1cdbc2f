from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set, Tuple

import json5  # type: ignore
import yaml

from .models import Settings


# ${NAME} or ${env:NAME}; $${NAME} is an escaped literal
VAR_PATTERN = re.compile(
    r"(?<!\$)\$\{([A-Za-z_][A-Za-z0-9_]*(?::[A-Za-z_][A-Za-z0-9_]*)?)\}"
)

_PARSERS: Dict[str, Callable[[str], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json5.loads,
    ".json5": json5.loads,
    ".jsonc": json5.loads,
}


def _whole_ref(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    m = VAR_PATTERN.fullmatch(value)
    return m.group(1) if m else None


def _declared_variables(doc: Dict[str, Any]) -> Dict[str, Any]:
    """`variables` as a mapping, or as a list of one-key mappings."""
    section = doc.get("variables")
    if isinstance(section, dict):
        items = [section]
    elif isinstance(section, list):
        items = [item for item in section if isinstance(item, dict)]
    else:
        return {}
    return {k: v for item in items for k, v in item.items() if isinstance(k, str)}


class _Variables:
    """
    Values for ${...} placeholders. A variable whose whole value is a
    reference to another variable (or to the environment) takes that value;
    unknown references are kept as written.
    """

    def __init__(self, declared: Dict[str, Any]):
        self._declared = declared
        self._values: Dict[str, Any] = {}
        self._resolving: Set[str] = set()
        for name in declared:
            self._value_of(name)

    def lookup(self, ref: str) -> Tuple[bool, Any]:
        if ref.startswith("env:"):
            val = os.getenv(ref[4:]) if ref[4:] else None
            return val is not None, val
        if ref in self._values:
            return True, self._values[ref]
        return False, None

    def _value_of(self, name: str) -> Any:
        if name in self._values:
            return self._values[name]
        if name in self._resolving:
            raise ValueError(f"Detected variable resolution cycle at '{name}'")
        self._resolving.add(name)
        value = self._declared[name]
        ref = _whole_ref(value)
        if ref is not None:
            if ref.startswith("env:"):
                found, env_val = self.lookup(ref)
                if found:
                    value = env_val
            elif ref in self._declared:
                value = self._value_of(ref)
        self._resolving.discard(name)
        self._values[name] = value
        return value

    def _render(self, m: re.Match) -> str:
        found, val = self.lookup(m.group(1))
        if not found:
            return m.group(0)
        if val is None:
            return ""
        if isinstance(val, (dict, list)):
            return json.dumps(val, ensure_ascii=False)
        return str(val)

    def expand(self, obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: self.expand(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [self.expand(v) for v in obj]
        if not isinstance(obj, str):
            return obj
        ref = _whole_ref(obj)
        if ref is not None:
            # Whole-value references keep the variable's type
            found, val = self.lookup(ref)
            return val if found else obj
        return VAR_PATTERN.sub(self._render, obj).replace("$${", "${")


def load_settings(path: str) -> Settings:
    """Read YAML or JSON5 settings, expanding ${...} variables before validation."""
    file = Path(path)
    parse = _PARSERS.get(file.suffix.lower())
    if parse is None:
        raise ValueError(f"Unsupported config file extension: {file.suffix}")
    data = parse(file.read_text(encoding="utf-8"))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Root configuration must be a mapping/object")

    variables = _Variables(_declared_variables(data))
    body = {k: v for k, v in data.items() if k != "variables"}
    return Settings.model_validate(variables.expand(body))
