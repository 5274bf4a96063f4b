"""Periodic cleanup of session key material and temporary files.

Schedules (defaults, see ``[intervals]``):

- every 30 min: selective clear of the primary credential directory,
  keeping the credential store and ``pre-key*`` files
- every 20 min: purge every session directory (primary and fleet) of files
  that are neither the credential store nor pre-keys
- every 3 h: the same purge, also removing pre-keys older than a day
- every 30 min: empty the tmp directory

The credential store and its SQLite side files (``-wal``, ``-shm``,
``-journal``) are never touched. Jobs only run while at least one session
is open.
"""

from __future__ import annotations

import asyncio
import shutil
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from fleetbot.config import Settings
from fleetbot.logger import logger
from fleetbot.utils import create_background_task

if TYPE_CHECKING:
    from fleetbot.supervisor import Supervisor

PREKEY_PREFIX = "pre-key"


def _is_credential(name: str, credentials_file: str) -> bool:
    return name == credentials_file or name.startswith(credentials_file + "-")


def _remove(path: Path) -> bool:
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as exc:
        logger.debug("Could not remove file", path=str(path), error=str(exc))
        return False
    return True


def clear_selective(auth_dir: Path, credentials_file: str) -> int:
    """Remove everything except the credential store and pre-key files."""
    if not auth_dir.exists():
        auth_dir.mkdir(parents=True, exist_ok=True)
        return 0
    removed = 0
    for entry in auth_dir.iterdir():
        if _is_credential(entry.name, credentials_file):
            continue
        if entry.is_file() and entry.name.startswith(PREKEY_PREFIX):
            continue
        removed += _remove(entry)
    return removed


def purge_session(
    auth_dir: Path,
    credentials_file: str,
    *,
    clean_prekeys: bool = False,
    prekey_max_age: float = 86400.0,
    now: float | None = None,
) -> int:
    """Remove non-essential files; with ``clean_prekeys`` also stale pre-keys."""
    if not auth_dir.is_dir():
        return 0
    now = time.time() if now is None else now
    removed = 0
    for entry in auth_dir.iterdir():
        if _is_credential(entry.name, credentials_file):
            continue
        if entry.name.startswith(PREKEY_PREFIX):
            if clean_prekeys and now - entry.stat().st_mtime > prekey_max_age:
                removed += _remove(entry)
            continue
        removed += _remove(entry)
    return removed


def clear_tmp(tmp_dir: Path, *, max_age: float | None = None, now: float | None = None) -> int:
    """Delete tmp files, or only those older than ``max_age`` seconds."""
    if not tmp_dir.exists():
        tmp_dir.mkdir(parents=True, exist_ok=True)
        return 0
    now = time.time() if now is None else now
    removed = 0
    for entry in tmp_dir.iterdir():
        if max_age is not None and now - entry.stat().st_mtime <= max_age:
            continue
        removed += _remove(entry)
    return removed


def session_dirs(settings: Settings) -> list[Path]:
    dirs = [settings.auth_dir]
    if settings.fleet_dir.is_dir():
        dirs.extend(sorted(d for d in settings.fleet_dir.iterdir() if d.is_dir()))
    return dirs


class Housekeeper:
    def __init__(self, settings: Settings, supervisor: Supervisor) -> None:
        self.settings = settings
        self.supervisor = supervisor
        self._tasks: list[asyncio.Task[None]] = []

    def start(self) -> None:
        iv = self.settings.intervals
        creds = self.settings.sessions.credentials_file
        jobs: list[tuple[str, float, Callable[[], int]]] = [
            (
                "selective-clear",
                iv.selective_clear,
                lambda: clear_selective(self.settings.auth_dir, creds),
            ),
            (
                "key-purge",
                iv.key_purge,
                lambda: self._purge_all(session_dirs(self.settings), clean_prekeys=False),
            ),
            (
                "prekey-purge",
                iv.prekey_purge,
                lambda: self._purge_all(session_dirs(self.settings), clean_prekeys=True),
            ),
            ("tmp-reset", iv.tmp_reset, lambda: clear_tmp(self.settings.tmp_dir)),
        ]
        for name, interval, job in jobs:
            self._tasks.append(create_background_task(self._every(name, interval, job), name=name))

    def _purge_all(self, dirs: Iterable[Path], *, clean_prekeys: bool) -> int:
        return sum(
            purge_session(
                d,
                self.settings.sessions.credentials_file,
                clean_prekeys=clean_prekeys,
                prekey_max_age=self.settings.intervals.prekey_max_age,
            )
            for d in dirs
        )

    async def _every(self, name: str, interval: float, job: Callable[[], int]) -> None:
        while True:
            await asyncio.sleep(interval)
            if not self.supervisor.open_sessions():
                continue
            try:
                removed = await asyncio.to_thread(job)
            except OSError as exc:
                logger.warning("Housekeeping job failed", job=name, error=str(exc))
                continue
            logger.info("Housekeeping", job=name, removed=removed)

    def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
