"""File-backed byte store for CA and client material.

Blobs are addressed by path. Relative paths resolve against ``base_dir``.
Writes go through a temp file and ``os.replace`` so a crash never leaves a
half-written key behind.
"""
from __future__ import annotations

import os
from typing import Optional


class StoreError(OSError):
    pass


class FileStore:
    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir or os.getcwd()

    def resolve(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.join(self.base_dir, path)

    def exists(self, path: str) -> bool:
        return os.path.isfile(self.resolve(path))

    def read_bytes(self, path: str) -> Optional[bytes]:
        full = self.resolve(path)
        if not os.path.exists(full):
            return None
        try:
            with open(full, "rb") as f:
                return f.read()
        except OSError as e:
            raise StoreError(f"cannot read {full}: {e}") from e

    def write_bytes(self, path: str, data: bytes, private: bool = False) -> str:
        full = self.resolve(path)
        directory = os.path.dirname(full)
        if directory:
            os.makedirs(directory, exist_ok=True)

        tmp = f"{full}.{os.getpid()}.tmp"
        try:
            # Private material is created 0600 from the start.
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600 if private else 0o644)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, full)
            if private:
                os.chmod(full, 0o600)
        except OSError as e:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise StoreError(f"cannot write {full}: {e}") from e
        return full
