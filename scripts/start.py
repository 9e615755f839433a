#!/usr/bin/env python3
"""
Container entrypoint: run the release step, then exec gunicorn.

Event fan-out lives in one process, so gunicorn gets exactly one worker and
scales with threads instead. Each open /api/events stream pins a thread, and
the timeout is off because those streams are long-lived.

  PORT=8080 GUNICORN_THREADS=32 python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 8080
DEFAULT_THREADS = 32


def _env_int(name: str, default: int, *, low: int, high: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SystemExit(f"{name} must be an integer, got {raw!r}")
    if not low <= value <= high:
        raise SystemExit(f"{name} must be between {low} and {high}, got {value}")
    return value


def gunicorn_argv(port: int, threads: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", "1",
        "--worker-class", "gthread",
        "--threads", str(threads),
        "--timeout", "0",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _env_int("PORT", DEFAULT_PORT, low=1, high=65535)
    threads = _env_int("GUNICORN_THREADS", DEFAULT_THREADS, low=1, high=1024)

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"[start] release failed: {e}", flush=True)
        sys.exit(1)

    argv = gunicorn_argv(port, threads)
    print(f"[start] exec {' '.join(argv)}", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
