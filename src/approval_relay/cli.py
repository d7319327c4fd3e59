"""Relay entrypoint: ``approval-relay serve | mcp | sweep``."""

from __future__ import annotations

import argparse
import os
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from dotenv import load_dotenv

from approval_relay.approval.ports import NotificationSink
from approval_relay.config import RelayConfig, SinkKind
from approval_relay.infra import otel_tracing
from approval_relay.infra.log_sink import LoggingNotificationSink
from approval_relay.infra.slack import SlackNotificationSink
from approval_relay.runtime import build_runtime, set_runtime
from approval_relay.store.kv_store import TTLStore

_DEFAULT_VERSION = "0.1.0"
_DEFAULT_HOST = "127.0.0.1"
_DEFAULT_PORT = 8420
_DEFAULT_MCP_PORT = 8421


def _project_version() -> str:
    try:
        return version("approval-relay")
    except PackageNotFoundError:
        return _DEFAULT_VERSION


def parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="approval-relay",
        description="Human approval relay with durable callback correlation",
    )
    parser.add_argument("--version", action="version", version=_project_version())
    parser.add_argument(
        "command",
        choices=("serve", "mcp", "sweep"),
        help="serve: HTTP API | mcp: MCP tools over HTTP | sweep: evict expired records once",
    )
    parser.add_argument("--host", default=None, help="Bind host (serve and mcp)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (serve and mcp)")
    return parser.parse_args(argv if argv is not None else sys.argv[1:])


def build_sink(config: RelayConfig) -> NotificationSink:
    """Construct the notification sink selected by ``APPROVAL_SINK``."""
    if config.sink is SinkKind.LOG:
        return LoggingNotificationSink()
    if not (config.slack_bot_token and config.slack_channel_id):
        raise SystemExit("Slack sink requires SLACK_BOT_TOKEN and SLACK_APPROVAL_CHANNEL_ID.")
    return SlackNotificationSink.from_token(config.slack_bot_token, config.slack_channel_id)


def run_sweep(config: RelayConfig) -> dict[str, int]:
    """Evict expired records from both partitions without launching DBOS."""
    stores = {
        "webhooks": TTLStore(config.webhooks_dir, ttl_seconds=config.webhook_ttl_seconds),
        "results": TTLStore(config.results_dir, ttl_seconds=config.result_ttl_seconds),
    }
    return {name: store.sweep().evicted for name, store in stores.items()}


def _launch_dbos(config: RelayConfig) -> None:
    """Register the runtime and launch DBOS so awaiting workflows can run or recover."""
    from approval_relay.infra.task_host import DBOS, DBOSConfig, DBOSTaskHost

    runtime = build_runtime(
        config,
        sink=build_sink(config),
        host=DBOSTaskHost(
            deadline_seconds=config.approval_deadline_seconds,
            recv_window_seconds=config.webhook_ttl_seconds,
        ),
    )
    set_runtime(runtime)
    dbos_config: DBOSConfig = {
        "name": config.app_name,
        "system_database_url": config.system_database_url,
    }
    DBOS(config=dbos_config)
    DBOS.launch()


def _serve_http(host: str | None, port: int | None) -> None:
    import uvicorn

    uvicorn.run(
        "approval_relay.server.app:app",
        host=host or os.getenv("APPROVAL_RELAY_HOST", _DEFAULT_HOST),
        port=port or int(os.getenv("APPROVAL_RELAY_PORT", str(_DEFAULT_PORT))),
        log_level="info",
    )


def _serve_mcp(host: str | None, port: int | None) -> None:
    from approval_relay.server.mcp_server import create_mcp_server

    create_mcp_server().run(
        transport="streamable-http",
        host=host or os.getenv("APPROVAL_RELAY_HOST", _DEFAULT_HOST),
        port=port or int(os.getenv("APPROVAL_RELAY_MCP_PORT", str(_DEFAULT_MCP_PORT))),
    )


def main(argv: list[str] | None = None) -> None:
    """Load config, assemble the runtime, and run the selected surface."""
    base_dir = Path.cwd()
    load_dotenv(dotenv_path=base_dir / ".env")
    args = parse_cli_args(argv)
    config = RelayConfig.from_env(base_dir=base_dir)

    if args.command == "sweep":
        counts = run_sweep(config)
        print(f"Evicted {counts['webhooks']} webhook record(s), {counts['results']} result record(s).")
        return

    otel_tracing.configure()
    try:
        _launch_dbos(config)
    except (OSError, RuntimeError, ValueError) as exc:
        raise SystemExit(f"Failed to initialize runtime: {exc}") from exc

    if args.command == "mcp":
        _serve_mcp(args.host, args.port)
        return
    _serve_http(args.host, args.port)


if __name__ == "__main__":
    main()
