"""Unit tests for the signal-driven shutdown coordinator."""

import os
import signal
import subprocess
import sys
import textwrap
import threading
import time
from pathlib import Path

from webserver.lifecycle.shutdown import ShutdownCoordinator
from webserver.lifecycle.state import LifecycleState, ServerLifecycle

PROJECT_ROOT = Path(__file__).resolve().parents[2]


class RecordingManager:
    """Stands in for ListenerManager, tracking the drain sequence."""

    def __init__(self, lifecycle: ServerLifecycle, wait_result: bool = True):
        self.lifecycle = lifecycle
        self.calls = []
        self.wait_result = wait_result

    def drain(self):
        self.calls.append("drain")
        self.lifecycle.begin_draining()

    def wait_stopped(self, grace_seconds):
        self.calls.append(("wait_stopped", grace_seconds))
        self.lifecycle.mark_stopped()
        return self.wait_result


def test_await_signal_times_out_without_signal():
    coordinator = ShutdownCoordinator(ServerLifecycle(), grace_seconds=1)
    started = time.monotonic()
    assert coordinator.await_signal(timeout=0.1) is None
    assert time.monotonic() - started < 1.0


def test_first_signal_releases_waiter():
    coordinator = ShutdownCoordinator(ServerLifecycle(), grace_seconds=1)
    threading.Timer(0.05, coordinator.handle_signal, args=(signal.SIGTERM,)).start()
    received = coordinator.await_signal(timeout=2.0)
    assert received is not None
    assert received.signum == signal.SIGTERM
    assert received.name == "SIGTERM"


def test_drive_drains_then_waits_with_grace():
    lifecycle = ServerLifecycle()
    lifecycle.mark_running()
    manager = RecordingManager(lifecycle)
    coordinator = ShutdownCoordinator(lifecycle, grace_seconds=4)
    coordinator.handle_signal(signal.SIGINT)
    assert coordinator.drive(manager) is True
    assert manager.calls == ["drain", ("wait_stopped", 4)]
    assert lifecycle.state is LifecycleState.STOPPED


def test_drive_reports_abandoned_workers():
    lifecycle = ServerLifecycle()
    coordinator = ShutdownCoordinator(lifecycle, grace_seconds=0)
    assert coordinator.drive(RecordingManager(lifecycle, wait_result=False)) is False


def test_second_signal_while_draining_shortens_grace():
    lifecycle = ServerLifecycle()
    lifecycle.mark_running()
    coordinator = ShutdownCoordinator(
        lifecycle, grace_seconds=10, force_grace_seconds=0
    )
    coordinator.handle_signal(signal.SIGTERM)
    lifecycle.begin_draining()
    release = threading.Event()
    worker = threading.Thread(target=release.wait, args=(5,), daemon=True)
    worker.start()
    lifecycle.register_worker(worker)

    coordinator.handle_signal(signal.SIGTERM)
    started = time.monotonic()
    try:
        assert lifecycle.wait_for_workers(10) is False
    finally:
        release.set()
    assert time.monotonic() - started < 1.0
    assert coordinator.signal_count == 2


def test_second_signal_before_drain_applies_once_draining():
    lifecycle = ServerLifecycle()
    coordinator = ShutdownCoordinator(
        lifecycle, grace_seconds=10, force_grace_seconds=0
    )
    coordinator.handle_signal(signal.SIGTERM)
    coordinator.handle_signal(signal.SIGINT)

    release = threading.Event()
    worker = threading.Thread(target=release.wait, args=(5,), daemon=True)
    worker.start()
    lifecycle.register_worker(worker)

    class Manager(RecordingManager):
        def wait_stopped(self, grace_seconds):
            return lifecycle.wait_for_workers(grace_seconds)

    started = time.monotonic()
    try:
        assert coordinator.drive(Manager(lifecycle)) is False
    finally:
        release.set()
    assert time.monotonic() - started < 1.0


def test_second_signal_ignored_when_forcing_disabled():
    lifecycle = ServerLifecycle()
    coordinator = ShutdownCoordinator(
        lifecycle, grace_seconds=10, second_signal_forces=False
    )
    coordinator.handle_signal(signal.SIGTERM)
    lifecycle.begin_draining()
    release = threading.Event()
    worker = threading.Thread(target=release.wait, args=(5,), daemon=True)
    worker.start()
    lifecycle.register_worker(worker)

    coordinator.handle_signal(signal.SIGTERM)
    threading.Timer(0.3, release.set).start()
    assert lifecycle.wait_for_workers(5) is True


def test_install_registers_handlers():
    coordinator = ShutdownCoordinator(ServerLifecycle(), grace_seconds=1)
    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGTERM, signal.SIGINT)}
    try:
        coordinator.install()
        assert signal.getsignal(signal.SIGTERM) == coordinator.handle_signal
        assert signal.getsignal(signal.SIGINT) == coordinator.handle_signal
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def test_second_signal_while_lifecycle_lock_held_does_not_block():
    lifecycle = ServerLifecycle()
    coordinator = ShutdownCoordinator(
        lifecycle, grace_seconds=10, force_grace_seconds=0
    )
    coordinator.handle_signal(signal.SIGTERM)
    lifecycle.begin_draining()

    def interrupted_critical_section():
        # Signal handlers run on whichever thread holds the lock at the time.
        with lifecycle._lock:
            coordinator.handle_signal(signal.SIGTERM)

    thread = threading.Thread(target=interrupted_critical_section, daemon=True)
    thread.start()
    thread.join(timeout=2.0)

    assert not thread.is_alive()
    assert coordinator.signal_count == 2
    assert lifecycle.wait_for_workers(10) is True


def test_real_second_signal_during_locked_section_exits_cleanly():
    script = textwrap.dedent(
        """
        import os
        import signal

        from webserver.lifecycle.shutdown import ShutdownCoordinator
        from webserver.lifecycle.state import ServerLifecycle

        lifecycle = ServerLifecycle()
        coordinator = ShutdownCoordinator(lifecycle, grace_seconds=10)
        coordinator.install()
        os.kill(os.getpid(), signal.SIGTERM)
        lifecycle.begin_draining()
        with lifecycle._lock:
            os.kill(os.getpid(), signal.SIGTERM)
            total = sum(range(10000))
        print("finished", coordinator.signal_count)
        """
    )
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(
        filter(None, [str(PROJECT_ROOT), env.get("PYTHONPATH")])
    )
    result = subprocess.run(
        [sys.executable, "-c", script],
        cwd=PROJECT_ROOT,
        env=env,
        capture_output=True,
        text=True,
        timeout=10,
        check=False,
    )

    assert result.returncode == 0, result.stderr
    assert "finished 2" in result.stdout
