# tests/core/checkpoint/test_checkpoint_manager.py
"""Tests for CheckpointManager: checkpointed runs and stored checkpoint management."""

import asyncio
from datetime import UTC, datetime
from typing import Any

import pytest

from rekindle.contracts import (
    CheckpointCorruptionError,
    CheckpointKind,
    CheckpointSaved,
    CheckpointStatus,
    IncompatibleCheckpointError,
    TelemetryEvent,
)
from rekindle.core.checkpoint import (
    CheckpointManager,
    InMemoryCheckpointStore,
    checkpoint_dumps,
    checkpoint_loads,
    with_checkpointing,
)
from rekindle.core.checkpoint.manager import StateUpdater
from rekindle.core.clock import MockClock
from rekindle.core.config import CheckpointSettings

NO_TIMER = CheckpointSettings(checkpoint_interval_ms=0)


async def _failing_operation(state: dict[str, Any], update_state: StateUpdater) -> None:
    await update_state({"step": 1})
    raise ValueError("operation failed")


class TestCheckpointedRun:
    """run(): resume, update_state, completion and failure."""

    @pytest.mark.asyncio
    async def test_fresh_run_starts_with_empty_state(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)
        seen: list[dict[str, Any]] = []

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> str:
            seen.append(dict(state))
            return "ok"

        assert await manager.run(operation, "op-fresh") == "ok"
        assert seen == [{}]

    @pytest.mark.asyncio
    async def test_completed_run_keeps_exact_final_state(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> str:
            await update_state({"step": 1})
            await update_state({"step": 2, "witness": b"\x00\x01"})
            return "proof"

        result = await manager.run(operation, "op-complete")

        assert result == "proof"
        assert await manager.get_checkpoint("op-complete") == {"step": 2, "witness": b"\x00\x01"}
        record = await manager.get_record("op-complete")
        assert record is not None
        assert record.status == CheckpointStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_remove_then_get_returns_none(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"step": 3})

        await manager.run(operation, "op-remove")

        assert await manager.remove_checkpoint("op-remove") is True
        assert await manager.get_checkpoint("op-remove") is None
        assert await manager.remove_checkpoint("op-remove") is False

    @pytest.mark.asyncio
    async def test_failure_preserves_last_update_and_resumes(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)

        async def crashes(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"step": 1})
            raise RuntimeError("process died")

        with pytest.raises(RuntimeError, match="process died"):
            await manager.run(crashes, "op-resume")

        starting_states: list[dict[str, Any]] = []

        async def resumes(state: dict[str, Any], update_state: StateUpdater) -> int:
            starting_states.append(dict(state))
            await update_state({"step": state["step"] + 1})
            return state["step"]

        assert await manager.run(resumes, "op-resume") == 2
        assert starting_states == [{"step": 1}]

    @pytest.mark.asyncio
    async def test_resume_in_new_manager_instance(self, memory_store: InMemoryCheckpointStore) -> None:
        async def crashes(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"step": 1})
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await CheckpointManager(memory_store, settings=NO_TIMER).run(crashes, "op-restart")

        starting: list[dict[str, Any]] = []

        async def resumes(state: dict[str, Any], update_state: StateUpdater) -> None:
            starting.append(dict(state))
            await update_state({"step": 2})

        second = CheckpointManager(memory_store, settings=NO_TIMER)
        await second.run(resumes, "op-restart")

        assert starting == [{"step": 1}]
        record = await second.get_record("op-restart")
        assert record is not None
        # Sequence numbers continue across manager instances
        assert record.sequence_number > 1

    @pytest.mark.asyncio
    async def test_in_place_mutation_after_last_update_is_not_flushed_on_failure(
        self, memory_store: InMemoryCheckpointStore
    ) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)

        async def mutates_then_crashes(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"step": 1})
            state["step"] = 99
            raise RuntimeError("crash")

        with pytest.raises(RuntimeError):
            await manager.run(mutates_then_crashes, "op-boundary")

        assert await manager.get_checkpoint("op-boundary") == {"step": 1}

    @pytest.mark.asyncio
    async def test_resume_false_ignores_existing_checkpoint(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)
        await manager.save_checkpoint("op-restart-clean", {"step": 5})
        seen: list[dict[str, Any]] = []

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            seen.append(dict(state))

        await manager.run(operation, "op-restart-clean", resume=False)

        assert seen == [{}]
        assert await manager.get_checkpoint("op-restart-clean") == {}

    @pytest.mark.asyncio
    async def test_resumed_state_is_a_private_copy(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)
        await manager.save_checkpoint("op-copy", {"items": [1, 2]})

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            state["items"].append(3)
            raise RuntimeError("stop")

        with pytest.raises(RuntimeError):
            await manager.run(operation, "op-copy")

        assert await manager.get_checkpoint("op-copy") == {"items": [1, 2]}

    @pytest.mark.asyncio
    async def test_update_state_shallow_merges(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"a": 1, "nested": {"x": 1}})
            await update_state({"b": 2, "nested": {"y": 2}})

        await manager.run(operation, "op-merge")

        assert await manager.get_checkpoint("op-merge") == {"a": 1, "b": 2, "nested": {"y": 2}}

    @pytest.mark.asyncio
    async def test_update_state_rejects_non_mapping(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state(["not", "a", "mapping"])  # type: ignore[arg-type]

        with pytest.raises(TypeError, match="mapping"):
            await manager.run(operation, "op-bad-update")

    @pytest.mark.asyncio
    async def test_update_state_is_durable_before_resolving(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)
        observed: list[dict[str, Any] | None] = []

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"step": 7})
            observed.append(await manager.get_checkpoint("op-durable"))

        await manager.run(operation, "op-durable")

        assert observed == [{"step": 7}]

    @pytest.mark.asyncio
    async def test_empty_operation_id_rejected(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            return None

        with pytest.raises(ValueError, match="operation_id"):
            await manager.run(operation, "")

    @pytest.mark.asyncio
    async def test_negative_interval_rejected(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            return None

        with pytest.raises(ValueError, match="checkpoint_interval_ms"):
            await manager.run(operation, "op-interval", checkpoint_interval_ms=-1)

    @pytest.mark.asyncio
    async def test_kind_and_context_recorded(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"step": 1})

        await manager.run(operation, "op-meta", kind="batch", context={"circuit": "balance"})

        record = await manager.get_record("op-meta")
        assert record is not None
        assert record.kind == CheckpointKind.BATCH
        assert record.context == {"circuit": "balance"}

    @pytest.mark.asyncio
    async def test_on_progress_reports_numeric_progress(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)
        reports: list[dict[str, Any]] = []

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"progress": 50})
            await update_state({"note": "no progress change"})
            await update_state({"progress": "not numeric"})

        await manager.run(operation, "op-progress", on_progress=reports.append)

        assert reports == [
            {"operation_id": "op-progress", "progress": 50, "status": "running"},
            {"operation_id": "op-progress", "progress": 50, "status": "running"},
        ]


class TestTimerFlush:
    """Periodic persistence of in-place mutations."""

    @pytest.mark.asyncio
    async def test_timer_persists_in_place_mutations(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        observed: list[dict[str, Any] | None] = []

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            state["step"] = 1
            await asyncio.sleep(0.08)
            observed.append(await manager.get_checkpoint("op-timer"))

        await manager.run(operation, "op-timer", checkpoint_interval_ms=10)

        assert observed == [{"step": 1}]

    @pytest.mark.asyncio
    async def test_timer_skips_unchanged_state(
        self, memory_store: InMemoryCheckpointStore, events: list[TelemetryEvent]
    ) -> None:
        manager = CheckpointManager(memory_store, telemetry=events.append)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"step": 1})
            await asyncio.sleep(0.08)

        await manager.run(operation, "op-timer-idle", checkpoint_interval_ms=10)

        triggers = [e.trigger for e in events if isinstance(e, CheckpointSaved)]
        assert triggers == ["update", "complete"]

    @pytest.mark.asyncio
    async def test_timer_stopped_after_completion(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        leaked_state: dict[str, Any] = {}

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            nonlocal leaked_state
            leaked_state = state
            await update_state({"step": 1})

        await manager.run(operation, "op-timer-stop", checkpoint_interval_ms=10)
        leaked_state["step"] = 42
        await asyncio.sleep(0.05)

        assert await manager.get_checkpoint("op-timer-stop") == {"step": 1}


class TestSequencing:
    """Monotonic sequence numbers and stale-write protection."""

    @pytest.mark.asyncio
    async def test_sequence_numbers_strictly_increase(
        self, memory_store: InMemoryCheckpointStore, events: list[TelemetryEvent]
    ) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER, telemetry=events.append)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            for step in range(5):
                await update_state({"step": step})

        await manager.run(operation, "op-seq")

        sequences = [e.sequence_number for e in events if isinstance(e, CheckpointSaved)]
        assert sequences == sorted(sequences)
        assert len(set(sequences)) == len(sequences)

    @pytest.mark.asyncio
    async def test_concurrent_updates_leave_latest_state(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            await asyncio.gather(*(update_state({"step": i}) for i in range(10)))

        await manager.run(operation, "op-concurrent")

        assert await manager.get_checkpoint("op-concurrent") == {"step": 9}

    @pytest.mark.asyncio
    async def test_stale_write_is_dropped(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)
        await manager.save_checkpoint("op-stale", {"step": 2})
        record = await manager.get_record("op-stale")
        assert record is not None

        written = await manager._write(
            "op-stale",
            {"step": 1},
            sequence_number=record.sequence_number,
            status=CheckpointStatus.RUNNING,
            kind=CheckpointKind.GENERIC,
            context={},
            trigger="update",
        )

        assert written is None
        assert await manager.get_checkpoint("op-stale") == {"step": 2}

    @pytest.mark.asyncio
    async def test_finished_runs_release_bookkeeping(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"step": 1})

        for n in range(5):
            await manager.run(operation, f"op-{n}")
        with pytest.raises(ValueError):
            await manager.run(_failing_operation, "op-failed")
        await manager.save_checkpoint("op-saved", {"step": 1})

        assert manager._locks == {}
        assert manager._issued == {}
        assert manager._written == {}
        assert manager._active == {}

    @pytest.mark.asyncio
    async def test_sequence_continues_after_bookkeeping_released(
        self, memory_store: InMemoryCheckpointStore
    ) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"step": state.get("step", 0) + 1})

        await manager.run(operation, "op-again")
        first = await manager.get_record("op-again")
        await manager.run(operation, "op-again")
        second = await manager.get_record("op-again")

        assert first is not None and second is not None
        assert second.sequence_number > first.sequence_number
        assert second.state == {"step": 2}

    @pytest.mark.asyncio
    async def test_bookkeeping_kept_while_run_in_flight(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)
        release = asyncio.Event()

        async def waits(state: dict[str, Any], update_state: StateUpdater) -> None:
            await update_state({"step": 1})
            await release.wait()

        task = asyncio.create_task(manager.run(waits, "op-long"))
        await asyncio.sleep(0.01)
        await manager.save_checkpoint("op-long", {"step": 5})

        assert "op-long" in manager._issued
        release.set()
        await task
        assert "op-long" not in manager._issued

    @pytest.mark.asyncio
    async def test_update_after_run_finished_rejected(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=NO_TIMER)
        captured: list[StateUpdater] = []

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            captured.append(update_state)

        await manager.run(operation, "op-leaked")

        with pytest.raises(RuntimeError, match="finished"):
            await captured[0]({"step": 99})
        record = await manager.get_record("op-leaked")
        assert record is not None
        assert record.status == CheckpointStatus.COMPLETED
        assert record.state == {}


class TestStoredCheckpoints:
    """save/get/list/purge outside of run()."""

    @pytest.mark.asyncio
    async def test_save_checkpoint_round_trip(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        when = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

        saved = await manager.save_checkpoint(
            "op-save",
            {"when": when, "blob": b"\xff", "n": 1},
            kind=CheckpointKind.TRANSFERRED,
            context={"source": "token"},
        )

        assert saved.kind == CheckpointKind.TRANSFERRED
        assert await manager.get_checkpoint("op-save") == {"when": when, "blob": b"\xff", "n": 1}

    @pytest.mark.asyncio
    async def test_naive_datetime_in_state_survives_resume(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        started = datetime(2026, 1, 1, 12, 0)

        await manager.save_checkpoint("op-naive", {"started": started})
        restored = await manager.get_checkpoint("op-naive")

        assert restored == {"started": started}
        assert restored["started"] <= datetime(2026, 1, 2)

    @pytest.mark.asyncio
    async def test_save_checkpoint_validates_input(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)

        with pytest.raises(ValueError, match="operation_id"):
            await manager.save_checkpoint("", {"a": 1})
        with pytest.raises(ValueError, match="state"):
            await manager.save_checkpoint("op-none", None)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_get_checkpoint_returns_copy(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        await manager.save_checkpoint("op-immutable", {"items": [1]})

        first = await manager.get_checkpoint("op-immutable")
        assert first is not None
        first["items"].append(2)

        assert await manager.get_checkpoint("op-immutable") == {"items": [1]}

    @pytest.mark.asyncio
    async def test_storage_key_uses_namespace(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store, settings=CheckpointSettings(namespace="zk"))
        await manager.save_checkpoint("op-ns", {"a": 1})

        assert list(memory_store) == ["zk:op-ns"]

    @pytest.mark.asyncio
    async def test_expired_checkpoint_is_absent_and_deleted(
        self, memory_store: InMemoryCheckpointStore, mock_clock: MockClock
    ) -> None:
        manager = CheckpointManager(
            memory_store,
            settings=CheckpointSettings(expiry_time_ms=1000),
            clock=mock_clock,
        )
        await manager.save_checkpoint("op-expiring", {"a": 1})

        mock_clock.advance(0.5)
        assert await manager.get_checkpoint("op-expiring") == {"a": 1}

        mock_clock.advance(1.0)
        assert await manager.get_checkpoint("op-expiring") is None
        assert len(memory_store) == 0

    @pytest.mark.asyncio
    async def test_no_expiry_when_disabled(self, memory_store: InMemoryCheckpointStore, mock_clock: MockClock) -> None:
        manager = CheckpointManager(memory_store, settings=CheckpointSettings(expiry_time_ms=None), clock=mock_clock)
        saved = await manager.save_checkpoint("op-forever", {"a": 1})

        mock_clock.advance(10 * 365 * 24 * 3600)

        assert saved.expires_at is None
        assert await manager.get_checkpoint("op-forever") == {"a": 1}

    @pytest.mark.asyncio
    async def test_list_checkpoints_filters_and_orders(
        self, memory_store: InMemoryCheckpointStore, mock_clock: MockClock
    ) -> None:
        manager = CheckpointManager(memory_store, clock=mock_clock)
        await manager.save_checkpoint("op-a", {"a": 1})
        mock_clock.advance(1)
        await manager.save_checkpoint("op-b", {"b": 1}, kind="batch")
        mock_clock.advance(1)
        await manager.save_checkpoint("op-c", {"c": 1})
        await memory_store.put("other_namespace:op-x", "{}")

        all_ids = [s.operation_id for s in await manager.list_checkpoints()]
        batch_ids = [s.operation_id for s in await manager.list_checkpoints(kind=CheckpointKind.BATCH)]

        assert all_ids == ["op-c", "op-b", "op-a"]
        assert batch_ids == ["op-b"]

    @pytest.mark.asyncio
    async def test_list_skips_corrupt_entries(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        await manager.save_checkpoint("op-good", {"a": 1})
        await memory_store.put(manager.storage_key("op-bad"), "not json")

        assert [s.operation_id for s in await manager.list_checkpoints()] == ["op-good"]

    @pytest.mark.asyncio
    async def test_purge_expired(self, memory_store: InMemoryCheckpointStore, mock_clock: MockClock) -> None:
        short = CheckpointManager(memory_store, settings=CheckpointSettings(expiry_time_ms=1000), clock=mock_clock)
        long = CheckpointManager(memory_store, settings=CheckpointSettings(expiry_time_ms=60_000), clock=mock_clock)
        await short.save_checkpoint("op-short-1", {"a": 1})
        await short.save_checkpoint("op-short-2", {"a": 2})
        await long.save_checkpoint("op-long", {"a": 3})
        mock_clock.advance(5)

        assert await long.purge_expired(dry_run=True) == 2
        assert len(memory_store) == 3
        assert await long.purge_expired() == 2
        assert list(memory_store) == ["rekindle_checkpoints:op-long"]


class TestIntegrity:
    """Corrupt and incompatible snapshots surface as errors."""

    @pytest.mark.asyncio
    async def test_undecodable_snapshot_raises(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        await memory_store.put(manager.storage_key("op-garbage"), "{not json")

        with pytest.raises(CheckpointCorruptionError):
            await manager.get_checkpoint("op-garbage")

    @pytest.mark.asyncio
    async def test_tampered_state_fails_hash_check(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        await manager.save_checkpoint("op-tamper", {"balance": 10})
        key = manager.storage_key("op-tamper")
        raw = await memory_store.get(key)
        assert raw is not None
        snapshot = checkpoint_loads(raw)
        snapshot["state"]["balance"] = 10_000
        await memory_store.put(key, checkpoint_dumps(snapshot))

        with pytest.raises(CheckpointCorruptionError, match="hash mismatch"):
            await manager.get_checkpoint("op-tamper")

    @pytest.mark.asyncio
    async def test_unknown_format_version_raises(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        await manager.save_checkpoint("op-future", {"a": 1})
        key = manager.storage_key("op-future")
        raw = await memory_store.get(key)
        assert raw is not None
        snapshot = checkpoint_loads(raw)
        snapshot["format_version"] = 99
        await memory_store.put(key, checkpoint_dumps(snapshot))

        with pytest.raises(IncompatibleCheckpointError):
            await manager.get_record("op-future")

    @pytest.mark.asyncio
    async def test_run_refuses_to_resume_from_corrupt_checkpoint(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        await memory_store.put(manager.storage_key("op-corrupt-run"), '{"state": 1}')

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            return None

        with pytest.raises(CheckpointCorruptionError):
            await manager.run(operation, "op-corrupt-run")

    @pytest.mark.asyncio
    async def test_save_overwrites_corrupt_checkpoint(self, memory_store: InMemoryCheckpointStore) -> None:
        manager = CheckpointManager(memory_store)
        await memory_store.put(manager.storage_key("op-overwrite"), "garbage")

        await manager.save_checkpoint("op-overwrite", {"fresh": True})

        assert await manager.get_checkpoint("op-overwrite") == {"fresh": True}


class TestWithCheckpointing:
    """Module-level helper."""

    @pytest.mark.asyncio
    async def test_helper_runs_and_persists(self, memory_store: InMemoryCheckpointStore) -> None:
        async def operation(state: dict[str, Any], update_state: StateUpdater) -> str:
            await update_state({"done": True})
            return "result"

        result = await with_checkpointing(operation, "op-helper", store=memory_store, checkpoint_interval_ms=0)

        assert result == "result"
        assert await CheckpointManager(memory_store).get_checkpoint("op-helper") == {"done": True}

    @pytest.mark.asyncio
    async def test_helper_propagates_original_error(self, memory_store: InMemoryCheckpointStore) -> None:
        class ProofError(Exception):
            pass

        async def operation(state: dict[str, Any], update_state: StateUpdater) -> None:
            raise ProofError("constraint not satisfied")

        with pytest.raises(ProofError, match="constraint not satisfied"):
            await with_checkpointing(operation, "op-helper-fail", store=memory_store)
