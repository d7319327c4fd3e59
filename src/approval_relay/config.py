"""Environment-derived relay configuration.

``RelayConfig.from_env()`` is read once at startup; every component receives
the resulting immutable config instead of consulting the environment itself.

Dependencies: (none)
Wired in: cli.py → main(), runtime.py → build_runtime()
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

_DEFAULT_WEBHOOK_TTL_SECONDS = 3600
_DEFAULT_RESULT_TTL_SECONDS = 24 * 60 * 60
_DEFAULT_SWEEP_INTERVAL_SECONDS = 600
_DEFAULT_PUBLIC_URL = "http://127.0.0.1:8420"
_DEFAULT_SYSTEM_DATABASE_URL = "sqlite:///approval_relay.sqlite"
_DEFAULT_APP_NAME = "approval_relay"

WEBHOOKS_DIRNAME = "webhooks"
RESULTS_DIRNAME = "approval-results"


class SinkKind(StrEnum):
    SLACK = "slack"
    LOG = "log"


@dataclass(frozen=True)
class RelayConfig:
    """Immutable settings shared by stores, sinks, and the task host."""

    storage_dir: Path
    webhook_ttl_seconds: int = _DEFAULT_WEBHOOK_TTL_SECONDS
    result_ttl_seconds: int = _DEFAULT_RESULT_TTL_SECONDS
    approval_deadline_seconds: int | None = None
    """``None`` means an awaiting task waits indefinitely."""
    public_base_url: str = _DEFAULT_PUBLIC_URL
    sink: SinkKind = SinkKind.SLACK
    slack_bot_token: str | None = None
    slack_channel_id: str | None = None
    slack_signing_secret: str | None = None
    system_database_url: str = _DEFAULT_SYSTEM_DATABASE_URL
    app_name: str = _DEFAULT_APP_NAME
    sweep_interval_seconds: int = _DEFAULT_SWEEP_INTERVAL_SECONDS
    api_key: str | None = None

    @property
    def webhooks_dir(self) -> Path:
        return self.storage_dir / WEBHOOKS_DIRNAME

    @property
    def results_dir(self) -> Path:
        return self.storage_dir / RESULTS_DIRNAME

    @classmethod
    def from_env(cls, *, base_dir: Path) -> RelayConfig:
        """Build config from environment variables, resolving paths against *base_dir*."""
        sink_raw = os.getenv("APPROVAL_SINK", SinkKind.SLACK.value).strip().lower()
        try:
            sink = SinkKind(sink_raw)
        except ValueError as exc:
            choices = ", ".join(kind.value for kind in SinkKind)
            raise SystemExit(f"APPROVAL_SINK must be one of: {choices}.") from exc

        return cls(
            storage_dir=_resolve_storage_dir(base_dir),
            webhook_ttl_seconds=_read_positive_int(
                "APPROVAL_WEBHOOK_TTL_SECONDS", _DEFAULT_WEBHOOK_TTL_SECONDS
            ),
            result_ttl_seconds=_read_positive_int(
                "APPROVAL_RESULT_TTL_SECONDS", _DEFAULT_RESULT_TTL_SECONDS
            ),
            approval_deadline_seconds=_read_optional_deadline("APPROVAL_DEADLINE_SECONDS"),
            public_base_url=os.getenv("APPROVAL_RELAY_PUBLIC_URL", _DEFAULT_PUBLIC_URL).rstrip("/"),
            sink=sink,
            slack_bot_token=_read_optional_str("SLACK_BOT_TOKEN"),
            slack_channel_id=_read_optional_str("SLACK_APPROVAL_CHANNEL_ID"),
            slack_signing_secret=_read_optional_str("SLACK_SIGNING_SECRET"),
            system_database_url=os.getenv("DBOS_SYSTEM_DATABASE_URL", _DEFAULT_SYSTEM_DATABASE_URL),
            app_name=os.getenv("DBOS_APP_NAME", _DEFAULT_APP_NAME),
            sweep_interval_seconds=_read_positive_int(
                "APPROVAL_SWEEP_INTERVAL_SECONDS", _DEFAULT_SWEEP_INTERVAL_SECONDS
            ),
            api_key=_read_optional_str("APPROVAL_RELAY_API_KEY"),
        )


def _read_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as exc:
        raise SystemExit(f"{name} must be an integer.") from exc
    if value <= 0:
        raise SystemExit(f"{name} must be > 0.")
    return value


def _read_optional_deadline(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise SystemExit(f"{name} must be an integer.") from exc
    if value < 0:
        raise SystemExit(f"{name} must be >= 0.")
    return value or None


def _read_optional_str(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _resolve_storage_dir(base_dir: Path) -> Path:
    explicit = os.getenv("APPROVAL_RELAY_STORAGE_DIR")
    if explicit:
        path = Path(explicit).expanduser()
        return path if path.is_absolute() else (base_dir / path).resolve()
    return (base_dir / "data").resolve()
