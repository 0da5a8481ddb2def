"""Bounded compaction of the append-only history log.

Compaction splits the live history into an overflow prefix and a retained
suffix. The overflow is archived verbatim to a new timestamped snapshot file;
only after that write succeeds is the live file replaced by the retained
suffix. Concatenating the snapshot and the new live file reproduces the
pre-compaction history byte for byte.

ObservationStore holds the history lock for the whole read, snapshot and
rewrite sequence; the engine only locks its own state file.
"""

import json
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

import aiofiles
import aiofiles.os

from fahrenheit.memory.models import CompressionResult, MemoryCompressionOptions, utc_now
from fahrenheit.observability.logging import get_logger
from fahrenheit.utils.locks import file_lock

logger = get_logger(__name__)


def split_lines(text: str) -> list[str]:
    """Split on newlines only, keeping each terminator.

    str.splitlines() also breaks on characters such as U+2028 that may
    legitimately appear inside a JSON line.
    """
    if not text:
        return []
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


async def _remove_if_present(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass


class CompactionEngine:
    """Archives overflow history lines and truncates the live log.

    Age is measured from the last compaction, or from store creation when
    the store was never compacted. Both instants live in a small JSON state
    file next to the history.
    """

    def __init__(
        self,
        history_path: Path,
        state_path: Path,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._history_path = history_path
        self._state_path = state_path
        self._clock = clock

    async def ensure_state(self) -> None:
        """Record the store creation time if no usable state exists yet.

        An unreadable state file is re-anchored at the current time.
        """
        async with file_lock(self._state_path):
            if await aiofiles.os.path.exists(self._state_path):
                if await self._read_state() is not None:
                    return
                logger.warning("compaction_state_corrupt", path=str(self._state_path))
            await aiofiles.os.makedirs(self._state_path.parent, exist_ok=True)
            await self._write_state(
                {"created_at": self._clock().isoformat(), "last_compacted_at": None}
            )

    async def age_anchor(self) -> datetime:
        """Instant the min-age gate is measured from."""
        state = await self._read_state() or {}
        anchor = state.get("last_compacted_at") or state.get("created_at")
        if not isinstance(anchor, str):
            return self._clock()
        try:
            return datetime.fromisoformat(anchor)
        except ValueError:
            return self._clock()

    async def compress_if_needed(self, options: MemoryCompressionOptions) -> CompressionResult:
        history = await self._read_history()
        lines = split_lines(history)
        entry_count = sum(1 for line in lines if line.strip())
        size = len(history.encode("utf-8"))

        if entry_count <= options.max_lines and size <= options.max_bytes:
            return CompressionResult(compressed=False, reason="below_threshold")

        age = self._clock() - await self.age_anchor()
        if age < timedelta(minutes=options.min_age_minutes):
            logger.debug(
                "history_compaction_deferred",
                age_seconds=age.total_seconds(),
                min_age_minutes=options.min_age_minutes,
            )
            return CompressionResult(compressed=False, reason="below_min_age")

        cut = max(0, len(lines) - options.keep_last_lines)
        overflow, retained = lines[:cut], lines[cut:]
        if not overflow:
            return CompressionResult(compressed=False, reason="nothing_to_archive")

        snapshot_path = await self._write_snapshot(Path(options.snapshot_dir), "".join(overflow))
        try:
            await self._replace_history("".join(retained))
        except BaseException:
            # live history still holds the overflow
            await _remove_if_present(snapshot_path)
            raise
        await self._mark_compacted()

        logger.info(
            "history_compressed",
            snapshot_path=str(snapshot_path),
            archived_lines=len(overflow),
            retained_lines=len(retained),
        )
        return CompressionResult(
            compressed=True,
            snapshot_path=str(snapshot_path),
            archived_lines=len(overflow),
            retained_lines=len(retained),
        )

    async def _write_snapshot(self, snapshot_dir: Path, content: str) -> Path:
        await aiofiles.os.makedirs(snapshot_dir, exist_ok=True)
        stamp = self._clock().strftime("%Y%m%dT%H%M%S%fZ")
        candidate = snapshot_dir / f"history-{stamp}.jsonl"
        suffix = 1
        while True:
            try:
                f = await aiofiles.open(candidate, "x", encoding="utf-8", newline="")
                break
            except FileExistsError:
                candidate = snapshot_dir / f"history-{stamp}-{suffix}.jsonl"
                suffix += 1

        try:
            try:
                await f.write(content)
                await f.flush()
            finally:
                await f.close()
        except BaseException:
            await aiofiles.os.remove(candidate)
            raise
        return candidate

    async def _replace_history(self, content: str) -> None:
        tmp_path = self._history_path.with_name(self._history_path.name + ".tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8", newline="") as f:
                await f.write(content)
                await f.flush()
            await aiofiles.os.replace(tmp_path, self._history_path)
        except BaseException:
            await _remove_if_present(tmp_path)
            raise

    async def _mark_compacted(self) -> None:
        async with file_lock(self._state_path):
            state = await self._read_state() or {}
            state["last_compacted_at"] = self._clock().isoformat()
            await self._write_state(state)

    async def _read_history(self) -> str:
        try:
            async with aiofiles.open(self._history_path, encoding="utf-8", newline="") as f:
                return await f.read()
        except FileNotFoundError:
            return ""

    async def _read_state(self) -> dict | None:
        """Load the state file; None when it holds no JSON object."""
        try:
            async with aiofiles.open(self._state_path, encoding="utf-8") as f:
                state = json.loads(await f.read())
        except FileNotFoundError:
            return {}
        except ValueError:
            return None
        return state if isinstance(state, dict) else None

    async def _write_state(self, state: dict) -> None:
        async with aiofiles.open(self._state_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(state))
