from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock

from verifactu import config as _config

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


def lock_path(issuer_tax_id: str, lock_dir: Path | None = None) -> Path:
    """Lock file of one issuer's chain. Issuers never share a file."""
    base = lock_dir if lock_dir is not None else _config.get_lock_dir()
    safe = _UNSAFE.sub("_", issuer_tax_id.strip().upper())
    return base / f"chain-{safe}.lock"


@contextmanager
def issuer_chain_lock(
    issuer_tax_id: str,
    lock_dir: Path | None = None,
    timeout: float = -1,
) -> Iterator[None]:
    """Hold the exclusive single-writer lock of an issuer chain.

    The lock is a file lock, so it serializes fingerprinting and submission
    across threads and worker processes on the same machine.
    """
    path = lock_path(issuer_tax_id, lock_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(path, timeout=timeout):
        yield
