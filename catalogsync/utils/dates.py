"""Datetime helpers."""

from __future__ import annotations

import os

import pendulum

DEFAULT_TZ = "America/Los_Angeles"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def now_utc() -> pendulum.DateTime:
    return pendulum.now("UTC")


def now_in_tz() -> pendulum.DateTime:
    return pendulum.now(pendulum.timezone(timezone_name()))


def format_timestamp(value: pendulum.DateTime) -> str:
    return value.in_timezone(timezone_name()).format("YYYY-MM-DD HH:mm zz")
