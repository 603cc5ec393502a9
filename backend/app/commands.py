"""
commands.py — Flask CLI commands.

  flask --app backend.app purge-refresh-tokens
  flask --app backend.app purge-refresh-tokens --grace-minutes 30
  flask --app backend.app purge-refresh-tokens --interval-seconds 3600

With --interval-seconds the sweep repeats on a fixed interval until
interrupted; otherwise it runs once. Each pass commits on its own.
"""

from __future__ import annotations

import threading
from datetime import timedelta

import click
from flask import Flask

from backend.app.extensions import db
from backend.app.services.clock import Clock, utc_now
from backend.app.services.token_cleanup import sweep_refresh_tokens
from backend.config import AuthSettings


def run_sweep_once(app: Flask, grace: timedelta, clock: Clock = utc_now) -> int:
    with app.app_context():
        try:
            deleted = sweep_refresh_tokens(db.session, now=clock(), grace=grace)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
    return deleted


def run_sweep_loop(
        app: Flask,
        grace: timedelta,
        interval_seconds: float,
        stop_event: threading.Event,
        clock: Clock = utc_now,
) -> int:
    """Sweeps until `stop_event` is set. Returns the number of passes run."""
    passes = 0
    while not stop_event.is_set():
        run_sweep_once(app, grace, clock)
        passes += 1
        stop_event.wait(interval_seconds)
    return passes


def register_commands(app: Flask) -> None:

    @app.cli.command("purge-refresh-tokens")
    @click.option(
        "--grace-minutes",
        type=click.IntRange(min=0),
        default=None,
        help="Override REFRESH_TOKEN_GRACE_PERIOD for this run.",
    )
    @click.option(
        "--interval-seconds",
        type=click.IntRange(min=0),
        default=0,
        help="Repeat every N seconds until interrupted. 0 runs once.",
    )
    def purge_refresh_tokens(grace_minutes: int | None, interval_seconds: int) -> None:
        """Delete expired, used and invalidated refresh tokens past the grace period."""
        if grace_minutes is None:
            grace = AuthSettings.from_config(app.config).grace_period
        else:
            grace = timedelta(minutes=grace_minutes)

        if interval_seconds == 0:
            deleted = run_sweep_once(app, grace)
            click.echo(f"Deleted {deleted} refresh token(s).")
            return

        stop_event = threading.Event()
        try:
            run_sweep_loop(app, grace, interval_seconds, stop_event)
        except KeyboardInterrupt:
            stop_event.set()
            click.echo("Stopped.")
