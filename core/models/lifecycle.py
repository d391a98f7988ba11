"""
Model lifecycle management under a shared memory budget.

Responsibilities:
- Own the ModelSlots (the ONLY writer of slot state)
- Demand-based loading: eager for TRANSCRIPTION, lazy for REFINEMENT
- acquire()/release() with in-flight accounting
- Evict idle models to make room (swap), on idle timeout, and on host
  memory pressure; eviction of a busy slot is deferred until it drains
- Report LoadErrors and escalate unrecoverable allocation failures to
  the host

Non-responsibilities:
- No inference calls (engines do that with the slot's handle)
- No knowledge of utterances

Concurrency model:
- Everything runs on one event loop; load/unload calls run on a small
  executor so callers suspend without blocking unrelated stages.
- One transition per slot at a time (per-slot asyncio.Lock).
- Concurrent acquire() calls on a LOADING slot attach to the same load task.
- A freshly loaded slot stays pinned until its attached acquirers resume,
  so a competing load cannot evict it before they take their hold.
"""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from adapters.base import ModelCapability
from constants import MODEL_ACQUIRE_TIMEOUT_S, MODEL_POLICY_INTERVAL_S
from errors import LoadError, ModelFatalError, ModelUnavailable
from observability.logger import log
from observability.metrics import timed
from orchestrator.retry import FailureType, next_attempt, reset_attempt, should_retry


class ModelKind(str, Enum):
    TRANSCRIPTION = "transcription"
    REFINEMENT = "refinement"


class MemoryPressureLevel(str, Enum):
    """Host memory-pressure signal, mirroring the OS levels."""

    NORMAL = "normal"        # pressure subsided, eager models may reload
    WARNING = "warning"      # free non-essential models
    CRITICAL = "critical"    # free every idle model


class SlotState(str, Enum):
    UNLOADED = "UNLOADED"
    LOADING = "LOADING"
    READY = "READY"
    UNLOADING = "UNLOADING"


@dataclass(frozen=True)
class ModelSpec:
    """
    Static description of one model kind.

    essential:
        Kept on WARNING memory pressure, freed only on CRITICAL (still
        swappable when idle).
    eager:
        Loaded by start() instead of on first acquire().
    idle_timeout_s:
        Evict after this long without use; None disables idle eviction.
    """
    kind: ModelKind
    capability: ModelCapability
    path: str
    footprint_mb: int
    essential: bool = False
    eager: bool = False
    idle_timeout_s: Optional[float] = None


@dataclass(eq=False)
class ModelSlot:
    """
    Logical handle to one model kind.

    Engines may read `handle` only between acquire() and release(), which
    guarantees state READY for that window.
    """
    kind: ModelKind
    footprint_mb: int
    state: SlotState = SlotState.UNLOADED
    handle: Any = None
    in_flight: int = 0
    waiters: int = 0
    last_used: float = 0.0
    load_count: int = 0
    evict_pending: bool = False
    disabled_reason: Optional[str] = None

    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)
    _load_task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)

    @property
    def resident(self) -> bool:
        """True while the slot holds (or is acquiring/freeing) memory."""
        return self.state is not SlotState.UNLOADED

    @property
    def idle(self) -> bool:
        """READY with no holders and no acquirer about to take a hold."""
        return self.state is SlotState.READY and self.in_flight == 0 and self.waiters == 0


FatalCallback = Callable[[ModelKind, ModelFatalError], None]
LoadErrorCallback = Callable[[ModelKind, LoadError], None]


class ModelLifecycleManager:
    """
    Serializing owner of all model slots.

    Usage:
        manager = ModelLifecycleManager([asr_spec, lm_spec], memory_budget_mb=4096)
        await manager.start()
        slot = await manager.acquire(ModelKind.TRANSCRIPTION)
        try:
            ... slot.handle ...
        finally:
            manager.release(slot)
    """

    def __init__(
        self,
        specs: list[ModelSpec],
        *,
        memory_budget_mb: int,
        policy_interval_s: float = MODEL_POLICY_INTERVAL_S,
        on_fatal: Optional[FatalCallback] = None,
        on_load_error: Optional[LoadErrorCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        for spec in specs:
            if spec.footprint_mb > memory_budget_mb:
                raise ValueError(f"{spec.kind.value} footprint exceeds memory budget")

        self._specs = {spec.kind: spec for spec in specs}
        self._slots = {
            spec.kind: ModelSlot(kind=spec.kind, footprint_mb=spec.footprint_mb)
            for spec in specs
        }
        self._budget_mb = memory_budget_mb
        self._policy_interval_s = policy_interval_s
        self._on_fatal = on_fatal
        self._on_load_error = on_load_error
        self._clock = clock

        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="model-io")
        self._changed = asyncio.Event()
        self._policy_task: Optional[asyncio.Task[None]] = None
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the policy loop and kick off eager loads (not awaited)."""
        if self._policy_task is None:
            self._policy_task = asyncio.create_task(self._policy_loop())
        for spec in self._specs.values():
            if spec.eager:
                self._spawn(self._preload(spec.kind))

    async def stop(self) -> None:
        """Stop background work and unload every idle model."""
        if self._policy_task is not None:
            self._policy_task.cancel()
            try:
                await self._policy_task
            except asyncio.CancelledError:
                pass
            self._policy_task = None

        pending = list(self._background)
        pending.extend(
            s._load_task for s in self._slots.values()
            if s._load_task is not None and not s._load_task.done()
        )
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for slot in self._slots.values():
            await self._unload(slot, reason="shutdown")
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def slot(self, kind: ModelKind) -> ModelSlot:
        """Read-only view of a slot (do not mutate)."""
        return self._slots[kind]

    def has(self, kind: ModelKind) -> bool:
        return kind in self._slots

    async def acquire(
        self,
        kind: ModelKind,
        *,
        timeout: float | None = MODEL_ACQUIRE_TIMEOUT_S,
    ) -> ModelSlot:
        """
        Return the READY slot for kind with one more in-flight user.

        Suspends while the model is loading (or waiting for memory).

        Raises:
            ModelUnavailable if not READY within timeout or the kind is disabled.
            LoadError / ModelFatalError if the load this call attached to failed.
        """
        slot = self._slots.get(kind)
        if slot is None:
            raise ModelUnavailable(kind.value, "not configured")
        try:
            return await asyncio.wait_for(self._ensure_ready(slot, hold=True), timeout)
        except asyncio.TimeoutError as e:
            log("MODEL_ACQUIRE_TIMEOUT", kind=kind.value, timeout_s=timeout, state=slot.state.value)
            raise ModelUnavailable(kind.value, f"not ready within {timeout}s") from e

    def release(self, slot: ModelSlot) -> None:
        """Give back one in-flight use obtained from acquire()."""
        if slot.in_flight <= 0:
            raise RuntimeError(f"release() without acquire() for {slot.kind.value}")
        slot.in_flight -= 1
        slot.last_used = self._clock()
        if slot.in_flight == 0:
            if slot.evict_pending:
                self._spawn(self._unload(slot, reason="memory_pressure_deferred"))
            self._notify()

    def on_memory_pressure(
        self,
        level: MemoryPressureLevel = MemoryPressureLevel.WARNING,
    ) -> list[ModelKind]:
        """
        Host signal.

        WARNING frees non-essential models, CRITICAL frees every model.
        Idle slots are unloaded immediately; busy slots are marked and
        unloaded once their in-flight work drains.

        NORMAL cancels pending evictions and reloads eager models that are
        not resident (disabled kinds stay disabled).

        Returns:
            Kinds scheduled for eviction, or for reload on NORMAL.
        """
        if level is MemoryPressureLevel.NORMAL:
            return self._pressure_relieved()

        affected: list[ModelKind] = []
        for kind, slot in self._slots.items():
            if slot.state is not SlotState.READY:
                continue
            if self._specs[kind].essential and level is not MemoryPressureLevel.CRITICAL:
                continue
            affected.append(kind)
            if slot.idle:
                self._spawn(self._unload(slot, reason=f"memory_pressure_{level.value}"))
            else:
                slot.evict_pending = True
                log("MODEL_EVICTION_DEFERRED", kind=kind.value, in_flight=slot.in_flight)
        log("MEMORY_PRESSURE", level=level.value, evicting=[k.value for k in affected])
        return affected

    def _pressure_relieved(self) -> list[ModelKind]:
        reloading: list[ModelKind] = []
        for kind, slot in self._slots.items():
            slot.evict_pending = False
            if (
                self._specs[kind].eager
                and slot.disabled_reason is None
                and slot.state is SlotState.UNLOADED
            ):
                reloading.append(kind)
                self._spawn(self._preload(kind))
        log("MEMORY_PRESSURE", level=MemoryPressureLevel.NORMAL.value, reloading=[k.value for k in reloading])
        return reloading

    def retry(self, kind: ModelKind) -> None:
        """Re-enable a kind disabled by LoadError / ModelFatalError."""
        slot = self._slots[kind]
        if slot.disabled_reason is not None:
            log("MODEL_RETRY", kind=kind.value, previous_reason=slot.disabled_reason)
            slot.disabled_reason = None
            if self._specs[kind].eager:
                self._spawn(self._preload(kind))

    def used_mb(self) -> int:
        return sum(s.footprint_mb for s in self._slots.values() if s.resident)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Lightweight snapshot for logging / tests."""
        return {
            kind.value: {
                "state": slot.state.value,
                "in_flight": slot.in_flight,
                "waiters": slot.waiters,
                "load_count": slot.load_count,
                "evict_pending": slot.evict_pending,
                "disabled_reason": slot.disabled_reason,
            }
            for kind, slot in self._slots.items()
        }

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _ensure_ready(self, slot: ModelSlot, *, hold: bool) -> ModelSlot:
        while True:
            if slot.disabled_reason is not None:
                raise ModelUnavailable(slot.kind.value, f"disabled: {slot.disabled_reason}")

            if slot.state is SlotState.READY:
                if hold:
                    slot.in_flight += 1
                    slot.last_used = self._clock()
                return slot

            if slot.state is SlotState.UNLOADING:
                await self._wait_changed()
                continue

            if slot.state is SlotState.UNLOADED:
                slot.state = SlotState.LOADING
                slot._load_task = asyncio.create_task(self._load(slot))
                slot._load_task.add_done_callback(_consume_result)
                log("MODEL_LOADING", kind=slot.kind.value)

            # LOADING: attach to the in-progress load
            assert slot._load_task is not None
            if not hold:
                await asyncio.shield(slot._load_task)
                continue
            slot.waiters += 1
            try:
                await asyncio.shield(slot._load_task)
            finally:
                slot.waiters -= 1

    async def _preload(self, kind: ModelKind) -> None:
        try:
            await self._ensure_ready(self._slots[kind], hold=False)
        except (LoadError, ModelFatalError, ModelUnavailable) as e:
            # Hooks already reported load failures
            log("MODEL_PRELOAD_FAILED", kind=kind.value, error=str(e))

    async def _load(self, slot: ModelSlot) -> None:
        spec = self._specs[slot.kind]
        loop = asyncio.get_running_loop()
        try:
            async with slot._lock:
                await self._make_room(slot)
                attempt = reset_attempt()
                while True:
                    try:
                        with timed("model_load", details={"kind": slot.kind.value}):
                            handle = await loop.run_in_executor(
                                self._executor, spec.capability.load_model, spec.path
                            )
                        break
                    except MemoryError as e:
                        if (
                            should_retry(failure=FailureType.LOAD_OUT_OF_MEMORY, attempt=attempt)
                            and await self._evict_one_idle(exclude=slot.kind)
                        ):
                            attempt = next_attempt(attempt)
                            log("MODEL_LOAD_OOM_RETRY", kind=slot.kind.value, attempt=attempt.attempt)
                            continue
                        raise ModelFatalError(
                            f"{slot.kind.value}: out of memory loading {spec.path}"
                        ) from e

                slot.handle = handle
                slot.state = SlotState.READY
                slot.load_count += 1
                slot.last_used = self._clock()
                log("MODEL_READY", kind=slot.kind.value, load_count=slot.load_count, used_mb=self.used_mb())

        except ModelFatalError as e:
            self._fail_load(slot, str(e))
            log("MODEL_FATAL", kind=slot.kind.value, error=str(e))
            if self._on_fatal is not None:
                self._on_fatal(slot.kind, e)
            raise
        except LoadError as e:
            self._report_load_error(slot, e)
            raise
        except asyncio.CancelledError:
            slot.state = SlotState.UNLOADED
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Unknown engine failure: same treatment as a corrupt model file
            error = LoadError(f"{slot.kind.value}: {type(e).__name__}: {e}")
            self._report_load_error(slot, error)
            raise error from e
        finally:
            self._notify()

    def _report_load_error(self, slot: ModelSlot, error: LoadError) -> None:
        self._fail_load(slot, str(error))
        log("MODEL_LOAD_ERROR", kind=slot.kind.value, error=str(error))
        if self._on_load_error is not None:
            self._on_load_error(slot.kind, error)

    def _fail_load(self, slot: ModelSlot, reason: str) -> None:
        slot.state = SlotState.UNLOADED
        slot.handle = None
        slot.disabled_reason = reason

    async def _make_room(self, slot: ModelSlot) -> None:
        """Evict idle models (or wait for busy ones) until slot fits."""
        waiting_logged = False
        while self._used_mb_excluding(slot) + slot.footprint_mb > self._budget_mb:
            if await self._evict_one_idle(exclude=slot.kind):
                continue
            if not waiting_logged:
                log("MODEL_WAITING_FOR_MEMORY", kind=slot.kind.value, used_mb=self._used_mb_excluding(slot))
                waiting_logged = True
            await self._wait_changed()

    def _used_mb_excluding(self, slot: ModelSlot) -> int:
        return sum(s.footprint_mb for s in self._slots.values() if s is not slot and s.resident)

    # ------------------------------------------------------------------
    # Unloading
    # ------------------------------------------------------------------

    async def _evict_one_idle(self, *, exclude: ModelKind) -> bool:
        """Unload one idle READY slot, non-essential and least recently used first."""
        candidates = [
            s for s in self._slots.values()
            if s.kind is not exclude and s.idle
        ]
        if not candidates:
            return False
        candidates.sort(key=lambda s: (self._specs[s.kind].essential, s.last_used))
        return await self._unload(candidates[0], reason=f"make_room:{exclude.value}")

    async def _unload(self, slot: ModelSlot, *, reason: str) -> bool:
        if not slot.idle:
            return False

        async with slot._lock:
            # Re-check: state may have changed while waiting for the lock
            if not slot.idle:
                return False

            spec = self._specs[slot.kind]
            handle = slot.handle
            slot.state = SlotState.UNLOADING
            slot.handle = None
            log("MODEL_UNLOADING", kind=slot.kind.value, reason=reason)
            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(self._executor, spec.capability.unload_model, handle)
            finally:
                slot.state = SlotState.UNLOADED
                slot.evict_pending = False
                self._notify()
            log("MODEL_UNLOADED", kind=slot.kind.value, reason=reason, used_mb=self.used_mb())
            return True

    # ------------------------------------------------------------------
    # Policy loop
    # ------------------------------------------------------------------

    async def _policy_loop(self) -> None:
        while True:
            await asyncio.sleep(self._policy_interval_s)
            await self.run_policy_once()

    async def run_policy_once(self) -> None:
        """Apply idle-timeout and deferred evictions once."""
        now = self._clock()
        for kind, slot in self._slots.items():
            if not slot.idle:
                continue
            if slot.evict_pending:
                await self._unload(slot, reason="memory_pressure_deferred")
                continue
            timeout = self._specs[kind].idle_timeout_s
            if timeout is not None and now - slot.last_used >= timeout:
                await self._unload(slot, reason="idle_timeout")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _notify(self) -> None:
        self._changed.set()
        self._changed = asyncio.Event()

    async def _wait_changed(self) -> None:
        await self._changed.wait()

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def _consume_result(task: asyncio.Task[None]) -> None:
    # Load failures reach every attached acquirer; a load whose acquirers all
    # timed out still needs its exception retrieved.
    if not task.cancelled():
        task.exception()
