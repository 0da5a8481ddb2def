"""Unit tests for the file-backed ObservationStore."""

import asyncio
import json
from pathlib import Path

import aiofiles.os
import pytest

from fahrenheit.memory.filters import ObservationFilter
from fahrenheit.memory.models import MemoryCompressionOptions, MemoryPromotionPolicy, TrustClass
from fahrenheit.memory.store import ObservationStore
from fahrenheit.utils.locks import file_lock


@pytest.fixture
def store(tmp_path: Path, clock) -> ObservationStore:
    return ObservationStore(tmp_path / "workspace", clock=clock)


def compression(snapshot_dir: Path, **overrides) -> MemoryCompressionOptions:
    data = {
        "max_lines": 10,
        "max_bytes": 64,
        "min_age_minutes": 60,
        "keep_last_lines": 5,
        "snapshot_dir": str(snapshot_dir),
    }
    data.update(overrides)
    return MemoryCompressionOptions(**data)


class TestAppendObservation:
    """Tests for append_observation and promotion."""

    @pytest.mark.asyncio
    async def test_trusted_and_system_entries_promoted(
        self, store: ObservationStore, make_observation
    ) -> None:
        """Trusted and system observations reach curated memory with their class."""
        first = await store.append_observation(
            make_observation(
                source="notion",
                source_ref="page:123",
                summary="Task is blocked by an external dependency",
                project_tags=["Project-Alpha"],
                role_tags=["Ops"],
            )
        )
        second = await store.append_observation(
            make_observation(
                source="slack",
                source_ref="channel:C1",
                summary="Potential upsell path discovered in customer thread",
                trust_class=TrustClass.SYSTEM,
                project_tags=["project-alpha"],
                role_tags=["sales"],
            )
        )

        assert first.promotion.promoted is True
        assert first.promotion.promotion_class == "warning"
        assert second.promotion.promoted is True
        assert second.promotion.promotion_class == "operational"

        history = await store.read_history()
        assert '"source":"notion"' in history
        assert '"source":"slack"' in history

        memory = await store.read_memory()
        assert "source=notion" in memory
        assert "source=slack" in memory
        assert "signals=blocker" in memory
        assert "signals=upsell" in memory
        assert "project=project-alpha" in memory

    @pytest.mark.asyncio
    async def test_untrusted_stays_in_history(
        self, store: ObservationStore, make_observation
    ) -> None:
        """Untrusted observations are held for review and never curated."""
        result = await store.append_observation(
            make_observation(
                source="slack",
                summary="Unverified note from external source",
                trust_class=TrustClass.UNTRUSTED,
            ),
            MemoryPromotionPolicy(auto_promote_trust=["trusted", "system"]),
        )

        assert result.promotion.promoted is False
        assert result.promotion.reason.startswith("trust_requires_approval")
        assert result.event.status == "pending_review"
        assert await store.read_memory() == ""
        assert len(await store.list_observations()) == 1

    @pytest.mark.asyncio
    async def test_explicit_status_is_kept(self, store: ObservationStore, make_observation) -> None:
        result = await store.append_observation(
            make_observation(trust_class=TrustClass.UNTRUSTED, status="accepted")
        )

        assert result.event.status == "accepted"

    @pytest.mark.asyncio
    async def test_every_memory_entry_has_history(
        self, store: ObservationStore, make_observation
    ) -> None:
        """Curated memory is a projection of history."""
        for i, trust in enumerate(["trusted", "untrusted", "system", "trusted"]):
            await store.append_observation(
                make_observation(summary=f"update {i}", trust_class=trust)
            )

        history_ids = {event.id for event in await store.list_observations()}
        memory_lines = (await store.read_memory()).splitlines()

        assert len(memory_lines) == 3
        for line in memory_lines:
            assert line.rsplit("id=", 1)[1] in history_ids

    @pytest.mark.asyncio
    async def test_concurrent_appends_do_not_interleave(
        self, tmp_path: Path, make_observation, clock
    ) -> None:
        """Two store instances on one workspace write whole lines only."""
        first = ObservationStore(tmp_path / "shared", clock=clock)
        second = ObservationStore(tmp_path / "shared", clock=clock)

        await asyncio.gather(
            *(
                (first if i % 2 else second).append_observation(
                    make_observation(summary=f"parallel update {i} " + "x" * 2000)
                )
                for i in range(40)
            )
        )

        lines = (await first.read_history()).splitlines()
        assert len(lines) == 40
        for line in lines:
            json.loads(line)


class TestQueries:
    """Tests for list/read/search."""

    @pytest.mark.asyncio
    async def test_list_filters_and_limits(
        self, store: ObservationStore, make_observation
    ) -> None:
        for i in range(6):
            await store.append_observation(
                make_observation(
                    summary=f"update {i}",
                    group_id="alpha" if i % 2 == 0 else "beta",
                )
            )

        alpha = await store.list_observations(ObservationFilter(group_id="alpha"))
        latest_two = await store.list_observations(limit=2)

        assert [e.summary for e in alpha] == ["update 0", "update 2", "update 4"]
        assert [e.summary for e in latest_two] == ["update 4", "update 5"]

    @pytest.mark.asyncio
    async def test_list_skips_unparseable_lines(
        self, store: ObservationStore, make_observation
    ) -> None:
        await store.append_observation(make_observation(summary="before"))
        with store.history_path.open("a", encoding="utf-8") as f:
            f.write("garbage line\n")
        await store.append_observation(make_observation(summary="after"))

        assert [e.summary for e in await store.list_observations()] == ["before", "after"]

    @pytest.mark.asyncio
    async def test_filtered_history_and_memory(
        self, store: ObservationStore, make_observation
    ) -> None:
        await store.append_observation(make_observation(source="notion", summary="n1"))
        await store.append_observation(make_observation(source="slack", summary="s1"))

        history = await store.read_history(ObservationFilter(source="slack"))
        memory = await store.read_memory(ObservationFilter(source="notion"))

        assert len(history.splitlines()) == 1
        assert '"summary":"s1"' in history
        assert len(memory.splitlines()) == 1
        assert "summary=n1" in memory

    @pytest.mark.asyncio
    async def test_memory_filter_with_separator_in_reference(
        self, store: ObservationStore, make_observation
    ) -> None:
        """A reference that looks like extra fields does not change how the line filters."""
        await store.append_observation(
            make_observation(source_ref="page | group=beta", summary="tricky ref")
        )

        kept = await store.read_memory(ObservationFilter(group_id="alpha-team"))
        dropped = await store.read_memory(ObservationFilter(group_id="beta"))

        assert len(kept.splitlines()) == 1
        assert "ref=page / group=beta" in kept
        assert dropped == ""

    @pytest.mark.asyncio
    async def test_search_memory_first(self, store: ObservationStore, make_observation) -> None:
        await store.append_observation(make_observation(summary="Legal review pending"))

        results = await store.search("LEGAL")

        assert len(results) == 2
        assert results[0].startswith("- ")
        assert results[1].startswith("{")

    @pytest.mark.asyncio
    async def test_blank_search(self, store: ObservationStore) -> None:
        assert await store.search("   ") == []

    @pytest.mark.asyncio
    async def test_reads_before_first_write(self, store: ObservationStore) -> None:
        assert await store.read_history() == ""
        assert await store.read_memory() == ""
        assert await store.list_observations() == []


class TestCompression:
    """Tests for compress_history_if_needed."""

    @pytest.mark.asyncio
    async def test_respects_age_then_archives(
        self, store: ObservationStore, make_observation, clock
    ) -> None:
        """Compaction waits for min age, then archives the overflow exactly."""
        snapshot_dir = store.workspace_dir / ".memory" / "history-snapshots"
        for i in range(12):
            await store.append_observation(
                make_observation(source_ref=f"page:{i}", summary=f"observation {i}")
            )
        original = await store.read_history()

        early = await store.compress_history_if_needed(compression(snapshot_dir))
        assert early.compressed is False
        assert early.reason == "below_min_age"
        assert await store.read_history() == original

        compressed = await store.compress_history_if_needed(
            compression(snapshot_dir, min_age_minutes=0)
        )
        assert compressed.compressed is True
        assert compressed.archived_lines == 7
        assert compressed.retained_lines == 5

        snapshot = Path(compressed.snapshot_path)
        assert snapshot.parent == snapshot_dir
        assert snapshot.name.startswith("history-")
        remaining = await store.read_history()
        assert len(remaining.splitlines()) == 5
        assert snapshot.read_text(encoding="utf-8") + remaining == original

        summaries = [e.summary for e in await store.list_observations()]
        assert summaries == [f"observation {i}" for i in range(7, 12)]

    @pytest.mark.asyncio
    async def test_age_measured_from_last_compaction(
        self, store: ObservationStore, make_observation, clock
    ) -> None:
        """After a compaction the age gate restarts."""
        snapshot_dir = store.workspace_dir / "snaps"
        for i in range(12):
            await store.append_observation(make_observation(summary=f"first batch {i}"))
        clock.advance(minutes=61)

        first = await store.compress_history_if_needed(compression(snapshot_dir))
        assert first.compressed is True

        for i in range(12):
            await store.append_observation(make_observation(summary=f"second batch {i}"))
        clock.advance(minutes=30)
        deferred = await store.compress_history_if_needed(compression(snapshot_dir))
        assert deferred.reason == "below_min_age"

        clock.advance(minutes=31)
        second = await store.compress_history_if_needed(compression(snapshot_dir))
        assert second.compressed is True
        assert second.snapshot_path != first.snapshot_path

    @pytest.mark.asyncio
    async def test_below_threshold(self, store: ObservationStore, make_observation) -> None:
        await store.append_observation(make_observation())

        result = await store.compress_history_if_needed(
            MemoryCompressionOptions(min_age_minutes=0)
        )

        assert result.compressed is False
        assert result.reason == "below_threshold"

    @pytest.mark.asyncio
    async def test_relative_snapshot_dir_resolves_in_workspace(
        self, store: ObservationStore, make_observation
    ) -> None:
        for i in range(12):
            await store.append_observation(make_observation(summary=f"entry {i}"))

        result = await store.compress_history_if_needed(
            compression(Path("archive"), min_age_minutes=0)
        )

        assert Path(result.snapshot_path).parent == store.workspace_dir / "archive"

    @pytest.mark.asyncio
    async def test_snapshot_failure_leaves_history_untouched(
        self, store: ObservationStore, make_observation, tmp_path: Path
    ) -> None:
        """If the archive cannot be written the live history is not truncated."""
        for i in range(12):
            await store.append_observation(make_observation(summary=f"entry {i}"))
        original = await store.read_history()
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")

        with pytest.raises(OSError):
            await store.compress_history_if_needed(
                compression(blocker / "snapshots", min_age_minutes=0)
            )

        assert await store.read_history() == original

    @pytest.mark.asyncio
    async def test_rewrite_failure_discards_snapshot(
        self, store: ObservationStore, make_observation, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A failed history rewrite leaves no snapshot, so a retry archives each line once."""
        snapshot_dir = store.workspace_dir / "snaps"
        for i in range(12):
            await store.append_observation(make_observation(summary=f"entry {i}"))
        original = await store.read_history()

        async def failing_replace(*args, **kwargs) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(aiofiles.os, "replace", failing_replace)
        with pytest.raises(OSError):
            await store.compress_history_if_needed(compression(snapshot_dir, min_age_minutes=0))
        monkeypatch.undo()

        assert await store.read_history() == original
        assert list(snapshot_dir.iterdir()) == []
        assert not store.history_path.with_name("HISTORY.jsonl.tmp").exists()

        retried = await store.compress_history_if_needed(
            compression(snapshot_dir, min_age_minutes=0)
        )

        assert retried.compressed is True
        snapshots = list(snapshot_dir.iterdir())
        assert snapshots == [Path(retried.snapshot_path)]
        archived = snapshots[0].read_text(encoding="utf-8")
        assert len(archived.splitlines()) == 7
        assert archived + await store.read_history() == original

    @pytest.mark.asyncio
    async def test_corrupt_state_is_reanchored(
        self, store: ObservationStore, make_observation, clock
    ) -> None:
        """An unreadable state file restarts the age gate instead of failing."""
        snapshot_dir = store.workspace_dir / "snaps"
        for i in range(12):
            await store.append_observation(make_observation(summary=f"entry {i}"))
        clock.advance(minutes=120)
        store.state_path.write_text("{trunc", encoding="utf-8")

        deferred = await store.compress_history_if_needed(compression(snapshot_dir))
        assert deferred.reason == "below_min_age"
        state = json.loads(store.state_path.read_text(encoding="utf-8"))
        assert state["created_at"] == clock().isoformat()
        assert state["last_compacted_at"] is None

        clock.advance(minutes=61)
        compressed = await store.compress_history_if_needed(compression(snapshot_dir))
        assert compressed.compressed is True
        state = json.loads(store.state_path.read_text(encoding="utf-8"))
        assert state["last_compacted_at"] == clock().isoformat()

    @pytest.mark.asyncio
    async def test_non_object_state_is_reanchored(
        self, store: ObservationStore, make_observation
    ) -> None:
        await store.append_observation(make_observation())
        store.state_path.write_text("[1, 2]", encoding="utf-8")

        result = await store.compress_history_if_needed(
            compression(store.workspace_dir / "snaps", min_age_minutes=0)
        )

        assert result.reason == "below_threshold"
        assert isinstance(json.loads(store.state_path.read_text(encoding="utf-8")), dict)

    @pytest.mark.asyncio
    async def test_single_flight(self, store: ObservationStore, make_observation) -> None:
        """A second compaction while one is running returns immediately."""
        for i in range(12):
            await store.append_observation(make_observation(summary=f"entry {i}"))
        options = compression(store.workspace_dir / "snaps", min_age_minutes=0)
        single_flight = file_lock(store.history_path.with_name("HISTORY.jsonl.compaction"))

        async with file_lock(store.history_path):
            running = asyncio.create_task(store.compress_history_if_needed(options))

            async def wait_until_locked() -> None:
                while not single_flight.locked():
                    await asyncio.sleep(0.01)

            await asyncio.wait_for(wait_until_locked(), timeout=5)
            concurrent = await store.compress_history_if_needed(options)

        assert concurrent.compressed is False
        assert concurrent.reason == "compaction_in_progress"
        assert (await running).compressed is True
