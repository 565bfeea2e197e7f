from __future__ import annotations

import fcntl
import os
import tempfile
import time
from contextlib import contextmanager
from typing import Iterator, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import DeadlineExceeded, NotFound, RegistryCorrupt
from .models import AppRecord, AppRegistryDocument, ProxyConfig
from .runtime import Deadline
from .settings import Settings


DocT = TypeVar("DocT", bound=BaseModel)


def _ensure_parent(path: str) -> None:
    parent = os.path.dirname(os.path.abspath(path))
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)


def read_document(path: str, cls: type[DocT]) -> DocT | None:
    if not os.path.exists(path):
        return None
    try:
        with open(path, "rb") as fh:
            raw = fh.read()
    except OSError as e:
        raise RegistryCorrupt(f"failed to read {path}: {e}") from e
    try:
        return cls.model_validate_json(raw)
    except ValidationError as e:
        raise RegistryCorrupt(f"failed to parse {path}: {e}") from e


def write_document(path: str, doc: BaseModel) -> None:
    """Rewrite ``path`` in full: write a sibling temp file, then rename over it."""
    _ensure_parent(path)
    data = doc.model_dump_json(indent=2)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=os.path.dirname(os.path.abspath(path)))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(data)
            fh.write("\n")
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


@contextmanager
def exclusive_lock(path: str, deadline: Deadline, poll_s: float = 0.05) -> Iterator[None]:
    """Hold an advisory ``flock`` on ``path`` for the duration of the block.

    Serializes finks invocations on one host; gives up with DeadlineExceeded
    when another invocation holds the lock past our deadline.
    """
    _ensure_parent(path)
    fh = open(path, "a+")
    try:
        while True:
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if deadline.expired:
                    raise DeadlineExceeded(f"timed out waiting for lock {path}") from None
                time.sleep(min(poll_s, max(deadline.remaining(), 0.001)))
        try:
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
    finally:
        fh.close()


class AppRegistry:
    """Declared state: application name -> AppRecord, persisted as one JSON file."""

    def __init__(self, path: str, doc: AppRegistryDocument):
        self.path = path
        self.doc = doc

    @classmethod
    def load(cls, path: str, data_dir: str) -> "AppRegistry":
        doc = read_document(path, AppRegistryDocument)
        if doc is None:
            reg = cls(path, AppRegistryDocument(data_dir=data_dir))
            reg.save()
            return reg
        if not doc.data_dir:
            doc.data_dir = data_dir
        return cls(path, doc)

    def save(self) -> None:
        write_document(self.path, self.doc)

    def __contains__(self, name: object) -> bool:
        return name in self.doc.apps

    def __len__(self) -> int:
        return len(self.doc.apps)

    def get(self, name: str) -> AppRecord:
        rec = self.doc.apps.get(name)
        if rec is None:
            raise NotFound(f"application {name} not found")
        return rec

    def find(self, name: str) -> AppRecord | None:
        return self.doc.apps.get(name)

    def put(self, record: AppRecord) -> None:
        self.doc.apps[record.name] = record

    def delete(self, name: str) -> None:
        self.doc.apps.pop(name, None)

    def records(self) -> list[AppRecord]:
        return [self.doc.apps[n] for n in sorted(self.doc.apps)]


def default_proxy_config(settings: Settings) -> ProxyConfig:
    return ProxyConfig(
        container_name=settings.proxy_container,
        image=settings.proxy_image,
        network=settings.proxy_network,
    )


def read_proxy_config(settings: Settings) -> ProxyConfig:
    """Persisted proxy config, or the defaults if the proxy was never installed. Never writes."""
    return read_document(settings.proxy_path, ProxyConfig) or default_proxy_config(settings)


def load_proxy_config(path: str, defaults: ProxyConfig) -> ProxyConfig:
    doc = read_document(path, ProxyConfig)
    if doc is None:
        write_document(path, defaults)
        return defaults
    return doc


def save_proxy_config(path: str, config: ProxyConfig) -> None:
    write_document(path, config)
