"""File-backed observation store.

Workspace layout:

    HISTORY.jsonl                 append-only, one ObservationEvent per line
    MEMORY.md                     curated projection of promoted events
    .memory/compaction.json       compaction clock state
    .memory/history-snapshots/    archives written by compaction (default)

Appends are serialized per file with an asyncio.Lock shared by every store
instance in the process that points at the same path, and each record is
written with a single write() call, so concurrent callers interleave at line
granularity only. Compaction takes the same history lock, so no append can
land between its read and its rewrite.
"""

from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import aiofiles
import aiofiles.os

from fahrenheit.memory.compaction import CompactionEngine, split_lines
from fahrenheit.memory.filters import ObservationFilter, filter_observations
from fahrenheit.memory.models import (
    AppendResult,
    CompressionResult,
    MemoryCompressionOptions,
    MemoryPromotionPolicy,
    ObservationEvent,
    ObservationInput,
    ObservationStatus,
    utc_now,
)
from fahrenheit.memory.observations import (
    evaluate_promotion,
    format_memory_entry,
    normalize_observation,
    parse_history_line,
    parse_memory_entry,
    to_history_line,
)
from fahrenheit.observability.logging import get_logger
from fahrenheit.utils.locks import file_lock

logger = get_logger(__name__)

HISTORY_FILE = "HISTORY.jsonl"
MEMORY_FILE = "MEMORY.md"
STATE_FILE = ".memory/compaction.json"

MAX_LIST_LIMIT = 5000
MAX_SEARCH_LIMIT = 500


class ObservationStore:
    """Append-only observation history plus derived curated memory.

    Curated memory is never a source of truth: every line in MEMORY.md is
    written after, and derived from, a line in HISTORY.jsonl.
    """

    def __init__(
        self,
        workspace_dir: str | Path,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._workspace_dir = Path(workspace_dir).expanduser().resolve()
        self._clock = clock
        self._compaction = CompactionEngine(self.history_path, self.state_path, clock=clock)

    @property
    def workspace_dir(self) -> Path:
        return self._workspace_dir

    @property
    def history_path(self) -> Path:
        return self._workspace_dir / HISTORY_FILE

    @property
    def memory_path(self) -> Path:
        return self._workspace_dir / MEMORY_FILE

    @property
    def state_path(self) -> Path:
        return self._workspace_dir / STATE_FILE

    async def ensure_files(self) -> None:
        await aiofiles.os.makedirs(self._workspace_dir, exist_ok=True)
        for path in (self.history_path, self.memory_path):
            if not await aiofiles.os.path.exists(path):
                async with aiofiles.open(path, "a", encoding="utf-8"):
                    pass
        await self._compaction.ensure_state()

    async def append_observation(
        self,
        data: ObservationInput,
        policy: MemoryPromotionPolicy | None = None,
    ) -> AppendResult:
        """Normalize, record and (maybe) promote one observation.

        The promotion decision is taken once, here, and never revisited.
        Observations that are not promoted and carry no explicit status are
        stored as pending_review.

        Raises:
            ObservationValidationError: If a partition key is blank
            OSError: If the history or memory file cannot be written
        """
        policy = policy or MemoryPromotionPolicy()
        event = normalize_observation(data)
        promotion = evaluate_promotion(event, policy)
        if not promotion.promoted and data.status is None:
            event = event.model_copy(update={"status": ObservationStatus.PENDING_REVIEW.value})

        await self.ensure_files()
        await self._append_line(self.history_path, to_history_line(event))

        if promotion.promoted:
            await self._append_line(
                self.memory_path,
                format_memory_entry(event, promotion.promotion_class),
            )
            logger.info(
                "observation_promoted",
                observation_id=event.id,
                group_id=event.group_id,
                promotion_class=promotion.promotion_class,
            )
        else:
            logger.info(
                "observation_held",
                observation_id=event.id,
                group_id=event.group_id,
                reason=promotion.reason,
            )

        return AppendResult(event=event, promotion=promotion)

    async def list_observations(
        self,
        filters: ObservationFilter | None = None,
        limit: int = 200,
    ) -> list[ObservationEvent]:
        """Most recent matching observations, in append order."""
        safe_limit = max(1, min(limit, MAX_LIST_LIMIT))
        history = await self._read(self.history_path)
        events = []
        for line in split_lines(history):
            event = parse_history_line(line)
            if event is None:
                if line.strip():
                    logger.warning("history_line_unparseable", path=str(self.history_path))
                continue
            events.append(event)
        matched = filter_observations(events, filters)
        return matched[-safe_limit:]

    async def read_history(self, filters: ObservationFilter | None = None) -> str:
        """Raw history text; with filters, only matching parseable lines."""
        history = await self._read(self.history_path)
        if filters is None or filters.is_empty:
            return history
        kept = []
        for line in split_lines(history):
            event = parse_history_line(line)
            if event is not None and filters.matches(event):
                kept.append(line)
        return "".join(kept)

    async def read_memory(self, filters: ObservationFilter | None = None) -> str:
        """Curated memory text; with filters, only matching entries."""
        memory = await self._read(self.memory_path)
        if filters is None or filters.is_empty:
            return memory
        kept = []
        for line in split_lines(memory):
            fields = parse_memory_entry(line)
            if fields is not None and filters.matches_memory_fields(fields):
                kept.append(line)
        return "".join(kept)

    async def search(
        self,
        query: str,
        filters: ObservationFilter | None = None,
        limit: int = 50,
    ) -> list[str]:
        """Case-insensitive substring search over memory, then history."""
        needle = query.strip().lower()
        if not needle:
            return []
        safe_limit = max(1, min(limit, MAX_SEARCH_LIMIT))
        lines = split_lines(await self.read_memory(filters)) + split_lines(
            await self.read_history(filters)
        )
        matches = [line.rstrip("\n") for line in lines if needle in line.lower()]
        return matches[:safe_limit]

    async def compress_history_if_needed(
        self,
        options: MemoryCompressionOptions,
    ) -> CompressionResult:
        """Archive overflow history when size and age gates allow it.

        Single-flight per history file: a call made while another compaction
        is running returns ``compaction_in_progress`` without waiting.
        """
        await self.ensure_files()
        options = self._resolve_snapshot_dir(options)
        single_flight = file_lock(self.history_path.with_name(HISTORY_FILE + ".compaction"))
        if single_flight.locked():
            return CompressionResult(compressed=False, reason="compaction_in_progress")

        async with single_flight:
            async with file_lock(self.history_path):
                return await self._compaction.compress_if_needed(options)

    def _resolve_snapshot_dir(self, options: MemoryCompressionOptions) -> MemoryCompressionOptions:
        snapshot_dir = Path(options.snapshot_dir).expanduser()
        if not snapshot_dir.is_absolute():
            snapshot_dir = self._workspace_dir / snapshot_dir
        return options.model_copy(update={"snapshot_dir": str(snapshot_dir)})

    async def _append_line(self, path: Path, line: str) -> None:
        async with file_lock(path):
            async with aiofiles.open(path, "a", encoding="utf-8") as f:
                await f.write(line + "\n")

    async def _read(self, path: Path) -> str:
        try:
            async with aiofiles.open(path, encoding="utf-8", newline="") as f:
                return await f.read()
        except FileNotFoundError:
            return ""
