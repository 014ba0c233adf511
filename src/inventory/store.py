"""YAML-backed inventory store with dot-path access.

The whole document is rewritten on every mutation. There is no file locking:
the inventory belongs to a single operator, and concurrent writers will
lose updates.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

_MISSING = object()


class InventoryError(Exception):
    """Base exception for inventory errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class InventoryNotLoadedError(InventoryError):
    """Store used before load()."""

    def __init__(self):
        super().__init__("E300", "Inventory not loaded")


class InventoryFileError(InventoryError):
    """Inventory file unreadable, unwritable or not valid YAML."""

    def __init__(self, path: Path, detail: str):
        self.path = path
        super().__init__("E301", f"Inventory file {path}: {detail}")


class InventoryPathError(InventoryError):
    """Dot path cannot be applied to the document."""

    def __init__(self, path: str, detail: str):
        self.path = path
        super().__init__("E302", f"Invalid inventory path '{path}': {detail}")


def empty_document() -> dict:
    return {'servers': [], 'sites': []}


def _split(path: str) -> list[str]:
    if not path or any(not part for part in path.split('.')):
        raise InventoryPathError(path, "empty path segment")
    return path.split('.')


def _child(node: Any, part: str) -> Any:
    """Return node[part] for maps or lists, or _MISSING."""
    if isinstance(node, dict):
        return node.get(part, _MISSING)
    if isinstance(node, list) and part.isdigit():
        index = int(part)
        return node[index] if index < len(node) else _MISSING
    return _MISSING


class InventoryStore:
    """Dot-path key/value access over a YAML document on disk."""

    def __init__(self, path=None):
        self.path = Path(path) if path else Path.cwd() / 'fleet.yml'
        self.status = ''
        self._data: Optional[dict] = None

    @property
    def loaded(self) -> bool:
        return self._data is not None

    def load(self) -> None:
        """Read the inventory file, creating an empty one if absent."""
        if not self.path.exists():
            self.status = f"Creating inventory file at {self.path}"
            logger.info(self.status)
            self._data = empty_document()
            self._write()
        else:
            self.status = f"Reading inventory from {self.path}"
            logger.debug(self.status)

        try:
            with open(self.path, encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InventoryFileError(self.path, f"invalid YAML: {e}") from e
        except OSError as e:
            raise InventoryFileError(self.path, f"cannot read: {e}") from e

        if not isinstance(data, dict):
            data = empty_document()
        self._data = data

    def data(self) -> dict:
        """Return the in-memory document."""
        self._require_loaded()
        return self._data

    def get(self, path: str, default: Any = None) -> Any:
        """Return the value at path, or default if absent or null."""
        self._require_loaded()
        node: Any = self._data
        for part in _split(path):
            node = _child(node, part)
            if node is _MISSING:
                return default
        return default if node is None else node

    def has(self, path: str) -> bool:
        self._require_loaded()
        node: Any = self._data
        for part in _split(path):
            node = _child(node, part)
            if node is _MISSING:
                return False
        return True

    def set(self, path: str, value: Any) -> None:
        """Set the value at path and persist.

        Missing, null or scalar intermediates become maps. A list followed by a
        non-index segment becomes a map keyed by the list positions.
        """
        self._require_loaded()
        parts = _split(path)
        node: Any = self._data
        for part, next_part in zip(parts, parts[1:]):
            node = self._descend(node, part, next_part, path)
        self._assign(node, parts[-1], value, path)
        self._write()

    def delete(self, path: str) -> bool:
        """Remove the value at path and persist.

        Returns:
            False if the path did not exist. The document is persisted
            either way.
        """
        self._require_loaded()
        parts = _split(path)
        node: Any = self._data
        for part in parts[:-1]:
            node = _child(node, part)
            if node is _MISSING:
                break

        last = parts[-1]
        removed = False
        if isinstance(node, dict) and last in node:
            del node[last]
            removed = True
        elif isinstance(node, list) and last.isdigit() and int(last) < len(node):
            del node[int(last)]
            removed = True
        self._write()
        return removed

    def _descend(self, node: Any, part: str, next_part: str, path: str) -> Any:
        child = _child(node, part)
        if isinstance(child, dict):
            return child
        if isinstance(child, list) and next_part.isdigit():
            return child
        # A named key under a list turns the list into a map keyed by index
        if isinstance(child, list):
            replacement: dict = {str(i): item for i, item in enumerate(child)}
        else:
            replacement = {}
        self._assign(node, part, replacement, path)
        return replacement

    @staticmethod
    def _assign(node: Any, part: str, value: Any, path: str) -> None:
        if isinstance(node, dict):
            node[part] = value
        elif isinstance(node, list):
            if not part.isdigit():
                raise InventoryPathError(path, f"'{part}' is not a list index")
            index = int(part)
            if index < len(node):
                node[index] = value
            elif index == len(node):
                node.append(value)
            else:
                raise InventoryPathError(path, f"index {index} out of range")
        else:
            raise InventoryPathError(path, f"cannot set '{part}' on {type(node).__name__}")

    def _require_loaded(self) -> None:
        if self._data is None:
            raise InventoryNotLoadedError()

    def _write(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(self._data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise InventoryFileError(self.path, f"cannot write: {e}") from e
