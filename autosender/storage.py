from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union


class FileStorage(ABC):
    @abstractmethod
    def get_file(self, key: str) -> bytes:
        """Return the stored bytes for `key`; raise if they cannot be read."""

    @abstractmethod
    def put_file(self, key: str, data: bytes) -> str:
        """Store `data` under `key` and return the key."""


class LocalFileStorage(FileStorage):
    """Files kept under one base directory, keyed by relative path."""

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)

    def _path(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise ValueError(f"Storage key escapes base directory: {key!r}")
        return path

    def get_file(self, key: str) -> bytes:
        return self._path(key).read_bytes()

    def put_file(self, key: str, data: bytes) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return key
