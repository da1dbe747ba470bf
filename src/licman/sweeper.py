"""Periodic removal of expired licenses from the registry."""

import sys
import threading

from .registry import LicenseRegistry


DEFAULT_SWEEP_INTERVAL = 24 * 60 * 60


def run_sweep_loop(
    registry: LicenseRegistry,
    interval: float = DEFAULT_SWEEP_INTERVAL,
    stop_event: threading.Event | None = None,
) -> None:
    """Sweep *registry* every *interval* seconds until *stop_event* is set.

    Licenses that are never validated or deleted would otherwise stay in
    memory forever; validation only removes the ones it touches.
    """
    if stop_event is None:
        stop_event = threading.Event()

    while not stop_event.wait(interval):
        removed = registry.sweep_expired()
        if removed:
            print(
                f"[sweep] removed {removed} expired license(s), "
                f"{registry.get_license_count()} remaining",
                file=sys.stderr,
            )


def start_sweeper(
    registry: LicenseRegistry,
    interval: float = DEFAULT_SWEEP_INTERVAL,
) -> tuple[threading.Thread, threading.Event]:
    """Run the sweep loop in a daemon thread.

    Returns the thread and the event that stops it.
    """
    stop_event = threading.Event()
    thread = threading.Thread(
        target=run_sweep_loop,
        args=(registry, interval, stop_event),
        name="licman-sweeper",
        daemon=True,
    )
    thread.start()
    return thread, stop_event
