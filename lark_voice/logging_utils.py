"""Lightweight structured logging helpers."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

from .types import Command, CommandResult


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def ensure_log_dir(path: str) -> None:
    Path(path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def append_event(path: str, event: dict, *, max_bytes: int) -> None:
    ensure_log_dir(path)
    target = Path(path)
    if target.exists() and target.stat().st_size > max_bytes:
        rotated = target.with_name(f"{target.stem}-{int(time.time())}{target.suffix}")
        target.rename(rotated)
    with target.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")


def build_log_event(
    *,
    command: Command | None,
    result: CommandResult,
    latency_ms: float,
    error_kind: str | None,
    cache_hit: bool,
    model: str | None,
) -> dict:
    return {
        "ts": time.time(),
        "command": result.command,
        "raw_text": command.raw_text if command else result.command,
        "chain_id": command.chain_id if command else None,
        "priority": command.priority.name if command else None,
        "action": result.action.value,
        "module": result.module,
        "success": result.success,
        "latency_ms": round(latency_ms, 2),
        "error_kind": error_kind,
        "cache_hit": cache_hit,
        "fallback": bool(result.metadata.get("fallback")),
        "model": model,
        "response_preview": result.response[:80],
    }


__all__ = ["append_event", "build_log_event", "configure_logging", "ensure_log_dir"]
