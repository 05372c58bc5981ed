"""
Integration tests for CleanupManager.

Tests the registration and firing path end to end:
- Actions run once the owner is reclaimed, with the registered payload
- Registration validation
- Exactly-once firing under concurrent registration
- Same-payload mutual exclusion
- Statistics and shutdown behavior
"""
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from phantom_cleanup.errors import (
    NullArgumentError,
    SelfReferenceError,
    UnreferenceableOwnerError,
)
from phantom_cleanup.resources.manager import CleanupManager
from phantom_cleanup.resources.types import NO_PAYLOAD, PhantomHandle
from phantom_cleanup.threading.channel import NotificationChannel


class Owner:
    def __init__(self, name="owner"):
        self.name = name


class SlottedOwner:
    __slots__ = ("value",)


class Counter:
    def __init__(self):
        self._lock = threading.Lock()
        self.value = 0

    def increment(self):
        with self._lock:
            self.value += 1


class TestCleanupFiring:
    """Cleanup actions run after their owner is reclaimed."""

    def test_action_runs_with_registered_payload(self, cleanup_manager, collect):
        """The action receives the exact payload instance."""
        payload = {"path": "/tmp/x"}
        received = []

        owner = Owner()
        cleanup_manager.register(owner, received.append, payload)
        assert received == []

        del owner
        collect()

        assert len(received) == 1
        assert received[0] is payload

    def test_action_without_payload_called_with_no_args(self, cleanup_manager, collect):
        """Registrations without payload call action()."""
        calls = []
        owner = Owner()
        cleanup_manager.register(owner, lambda: calls.append("done"))

        del owner
        collect()

        assert calls == ["done"]

    def test_none_payload_passed_through(self, cleanup_manager, collect):
        """An explicit None payload reaches the action as None."""
        received = []
        owner = Owner()
        cleanup_manager.register(owner, received.append, None)

        del owner
        collect()

        assert received == [None]

    def test_action_does_not_run_while_owner_alive(self, cleanup_manager, collect):
        """A reachable owner never triggers its cleanup."""
        received = []
        owner = Owner()
        cleanup_manager.register(owner, received.append, "payload")

        collect()

        assert received == []
        assert cleanup_manager.pending_count() == 1
        del owner

    def test_two_registrations_fire_independently(self, cleanup_manager, collect):
        """Registering the same owner twice runs both cleanups."""
        received = []
        owner = Owner()
        first = cleanup_manager.register(owner, received.append, "first")
        second = cleanup_manager.register(owner, received.append, "second")
        assert first != second

        del owner
        collect()

        assert sorted(received) == ["first", "second"]

    def test_reference_cycle_owner_is_cleaned(self, cleanup_manager, collect):
        """Owners only reclaimable by the cyclic collector still fire."""
        received = []
        owner = Owner()
        owner.me = owner
        cleanup_manager.register(owner, received.append, "cycle")

        del owner
        collect()

        assert received == ["cycle"]

    def test_handle_id_prefix(self, cleanup_manager):
        """Handle ids start with the owner's type name."""
        owner = Owner()
        handle_id = cleanup_manager.register(owner, lambda: None)
        assert handle_id.startswith("owner_")


class TestRegistrationValidation:
    """Registration errors are raised synchronously and leave no trace."""

    def test_payload_is_owner_rejected(self, cleanup_manager):
        owner = Owner()
        with pytest.raises(SelfReferenceError):
            cleanup_manager.register(owner, lambda p: None, owner)
        assert cleanup_manager.pending_count() == 0

    def test_none_owner_rejected(self, cleanup_manager):
        with pytest.raises(NullArgumentError) as excinfo:
            cleanup_manager.register(None, lambda: None)
        assert excinfo.value.argument == "owner"

    def test_none_action_rejected(self, cleanup_manager):
        with pytest.raises(NullArgumentError) as excinfo:
            cleanup_manager.register(Owner(), None)
        assert excinfo.value.argument == "action"

    def test_non_callable_action_rejected(self, cleanup_manager):
        with pytest.raises(TypeError):
            cleanup_manager.register(Owner(), "not callable")

    @pytest.mark.parametrize("owner", [42, "text", (1, 2), [1], {"a": 1}])
    def test_builtin_owner_rejected(self, cleanup_manager, owner):
        """Objects without weak reference support cannot be owners."""
        with pytest.raises(UnreferenceableOwnerError):
            cleanup_manager.register(owner, lambda: None)

    def test_slotted_owner_without_weakref_rejected(self, cleanup_manager):
        with pytest.raises(UnreferenceableOwnerError):
            cleanup_manager.register(SlottedOwner(), lambda: None)

    def test_rejections_are_counted(self, cleanup_manager):
        owner = Owner()
        with pytest.raises(NullArgumentError):
            cleanup_manager.register(None, lambda: None)
        with pytest.raises(TypeError):
            cleanup_manager.register(owner, "not callable")
        with pytest.raises(SelfReferenceError):
            cleanup_manager.register(owner, lambda p: None, owner)
        with pytest.raises(UnreferenceableOwnerError):
            cleanup_manager.register(1, lambda: None)
        assert cleanup_manager.get_stats()["rejected"] == 4

    def test_register_after_shutdown_raises(self):
        manager = CleanupManager()
        manager.shutdown()
        with pytest.raises(RuntimeError):
            manager.register(Owner(), lambda: None)


class TestExactlyOnce:
    """Every cleanup fires exactly once."""

    def test_thousand_owners_counted_once(self, cleanup_manager, collect):
        counter = Counter()
        owners = [Owner(str(i)) for i in range(1000)]
        for owner in owners:
            cleanup_manager.register(owner, counter.increment)

        del owner
        owners.clear()
        collect()

        assert counter.value == 1000
        assert cleanup_manager.pending_count() == 0

    def test_concurrent_registration_counted_once(self, cleanup_manager, collect):
        """Registrations from several threads each fire exactly once."""
        counter = Counter()

        def register_batch(n):
            for _ in range(n):
                cleanup_manager.register(Owner(), counter.increment)

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [pool.submit(register_batch, 125) for _ in range(8)]
            for future in futures:
                future.result()

        collect()

        assert counter.value == 1000
        assert cleanup_manager.get_stats()["fired"] == 1000

    def test_duplicate_delivery_fires_once(self):
        """A handle seen twice by consumers runs only for the first one."""
        channel = NotificationChannel()
        manager = CleanupManager(channel=channel, autostart=False)
        counter = Counter()

        owner = Owner()
        manager.register(owner, counter.increment)
        del owner

        ok, handle = channel.try_pop()
        assert ok
        assert isinstance(handle, PhantomHandle)

        assert manager.process_item(handle) is True
        assert manager.process_item(handle) is False
        assert counter.value == 1
        manager.shutdown()

    def test_payload_released_after_firing(self, cleanup_manager, collect):
        """The handle drops its payload once fired."""
        import weakref

        class Payload:
            pass

        payload = Payload()
        payload_ref = weakref.ref(payload)
        owner = Owner()
        cleanup_manager.register(owner, lambda p: None, payload)

        del owner, payload
        collect()

        assert payload_ref() is None


class TestPayloadExclusion:
    """Cleanups sharing a payload never run concurrently."""

    def test_shared_payload_actions_are_serialized(self, idle_manager):
        class SharedState:
            def __init__(self):
                self.lock = threading.Lock()
                self.active = 0
                self.max_active = 0
                self.calls = 0

        def touch(state):
            with state.lock:
                state.active += 1
                state.max_active = max(state.max_active, state.active)
            time.sleep(0.001)
            with state.lock:
                state.active -= 1
                state.calls += 1

        state = SharedState()
        owners = [Owner() for _ in range(40)]
        for owner in owners:
            idle_manager.register(owner, touch, state)
        del owner
        owners.clear()

        # Drain from several threads at once, the way an exit drain can race
        # an inline drain.
        workers = [threading.Thread(target=idle_manager.drain_ready) for _ in range(4)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert state.calls == 40
        assert state.max_active == 1


class TestFailures:
    """Failing actions reach the exception chain; the daemon keeps going."""

    def test_failure_dispatched_unwrapped(self, cleanup_manager, collect):
        seen = []
        cleanup_manager.add_exception_handler(seen.append)
        error = RuntimeError("cleanup failed")

        def fail():
            raise error

        owner = Owner()
        cleanup_manager.register(owner, fail)
        del owner
        collect()

        assert seen == [error]
        assert cleanup_manager.get_stats()["failed"] == 1

    def test_daemon_survives_system_exit(self, cleanup_manager, collect):
        seen = []
        received = []
        cleanup_manager.add_exception_handler(seen.append)

        def exit_now():
            raise SystemExit(3)

        first = Owner()
        cleanup_manager.register(first, exit_now)
        del first
        collect()

        second = Owner()
        cleanup_manager.register(second, received.append, "after")
        del second
        collect()

        assert len(seen) == 1
        assert isinstance(seen[0], SystemExit)
        assert received == ["after"]
        assert cleanup_manager.daemon.is_alive()

    def test_daemon_survives_exiting_handler(self, cleanup_manager, collect):
        """A handler calling sys.exit() does not end the daemon."""
        seen = []
        received = []

        def exiting_handler(exc):
            seen.append(exc)
            sys.exit(1)

        cleanup_manager.add_exception_handler(exiting_handler)

        def fail():
            raise ValueError("cleanup failed")

        first = Owner()
        cleanup_manager.register(first, fail)
        del first
        collect()

        assert cleanup_manager.daemon.is_alive()

        second = Owner()
        cleanup_manager.register(second, received.append, "later")
        del second
        collect()

        assert [type(e) for e in seen] == [ValueError]
        assert received == ["later"]
        assert cleanup_manager.daemon.is_alive()

    def test_inline_drain_dispatches_keyboard_interrupt(self, idle_manager):
        """Drains on the calling thread route KeyboardInterrupt to the chain and keep going."""
        seen = []
        received = []
        idle_manager.add_exception_handler(seen.append)

        def interrupt():
            raise KeyboardInterrupt()

        first = Owner()
        idle_manager.register(first, interrupt)
        del first
        second = Owner()
        idle_manager.register(second, received.append, "next")
        del second

        assert idle_manager.run_cleanup_now() is True

        assert len(seen) == 1
        assert isinstance(seen[0], KeyboardInterrupt)
        assert received == ["next"]
        assert idle_manager.get_stats()["failed"] == 1
        assert idle_manager.pending_count() == 0

    def test_exit_drain_survives_system_exit(self, idle_manager):
        """The exit drain fires every ready handle even if one raises SystemExit."""
        seen = []
        received = []
        idle_manager.add_exception_handler(seen.append)

        def exit_now():
            raise SystemExit(2)

        first = Owner()
        idle_manager.register(first, exit_now)
        del first
        second = Owner()
        idle_manager.register(second, received.append, "at-exit")
        del second

        assert idle_manager.exit_coordinator.run_at_exit() == 2
        assert [type(e) for e in seen] == [SystemExit]
        assert received == ["at-exit"]


class TestStatsAndShutdown:
    """Statistics and shutdown tests."""

    def test_get_stats_keys(self, cleanup_manager):
        stats = cleanup_manager.get_stats()
        for key in ("registered", "fired", "failed", "rejected", "pending", "ready",
                    "exception_handlers", "daemon_alive", "priority", "run_on_exit",
                    "stalls", "rss_bytes"):
            assert key in stats
        assert stats["daemon_alive"] is True
        assert stats["rss_bytes"] is None or stats["rss_bytes"] > 0

    def test_get_pending_describes_registrations(self, cleanup_manager):
        owner = Owner()
        cleanup_manager.register(owner, lambda p: None, [1, 2])
        pending = cleanup_manager.get_pending()

        assert len(pending) == 1
        info = pending[0].to_dict()
        assert info["owner_type"].endswith("Owner")
        assert info["payload_type"] == "builtins.list"
        assert info["age_s"] >= 0

    def test_shutdown_stops_daemon(self):
        manager = CleanupManager()
        assert manager.daemon.is_alive()
        manager.shutdown()
        assert not manager.daemon.is_alive()
        assert manager.is_shutdown()

    def test_shutdown_is_idempotent(self):
        manager = CleanupManager()
        manager.shutdown()
        manager.shutdown()
        assert manager.is_shutdown()

    def test_no_payload_sentinel_repr(self):
        assert repr(NO_PAYLOAD) == "NO_PAYLOAD"
