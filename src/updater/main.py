"""
Updater entry point — pushes the billing database's PPP services to a
RouterOS device.

Runs as a one-shot command (cron or a systemd timer) under the
``ppp-updater`` user.

Key behaviours:
    - Loads configuration from ``/etc/ppp-updater/settings.toml``.
    - Router and database passwords come from the system keychain.
    - Reconciles each requested device id in order and stops at the first
      failure; nothing is retried.
    - ``--dry-run`` prints the commands that would be sent, without SSH.
    - Handles SIGTERM / SIGINT by finishing the current device and exiting.
    - Logs every reconciliation to the audit log.

Exit codes:
    0 = all devices reconciled
    1 = a reconciliation failed
    3 = configuration or startup error
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import asyncpg
import paramiko
import toml

from shared.audit import AuditLogger
from shared.db import get_connection_pool, health_check
from shared.secrets import get_secret
from updater.commands import build_erase_command, build_rebuild_payload
from updater.errors import UpdaterError
from updater.reconciler import Reconciler
from updater.router_client import RouterClient, open_ssh_client
from updater.service_store import ServiceStore
from updater.services import ServiceRecord

logger = logging.getLogger("updater.main")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 3

_DEFAULT_CONFIG_PATH = Path(
    os.environ.get("PPP_UPDATER_CONFIG", "/etc/ppp-updater/settings.toml")
)
_DEFAULT_AUDIT_PATH = Path("/var/log/ppp-updater/audit.log")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def load_config(path: Path = _DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load and validate settings from a TOML file.

    Returns:
        Parsed configuration dictionary.

    Raises:
        FileNotFoundError: If the config file does not exist.
        KeyError: If required keys are missing.
    """
    config = toml.load(path)

    required = [
        ("database",),
        ("router", "address"),
        ("router", "user"),
    ]
    for keys in required:
        obj = config
        for k in keys:
            if k not in obj:
                raise KeyError(f"Missing required config key: {'.'.join(keys)}")
            obj = obj[k]

    return config


def resolve_device_ids(
    cli_ids: Optional[Sequence[int]], config: Dict[str, Any]
) -> List[int]:
    """Device ids from the command line, else ``updater.device_id``.

    Raises:
        KeyError: If neither source names a device.
    """
    if cli_ids:
        return list(cli_ids)
    configured = config.get("updater", {}).get("device_id")
    if configured is None:
        raise KeyError("Missing required config key: updater.device_id")
    if isinstance(configured, list):
        return [int(d) for d in configured]
    return [int(configured)]


def _optional_secret(key_name: str) -> Optional[str]:
    try:
        return get_secret(key_name)
    except RuntimeError:
        logger.info("No '%s' secret configured; connecting without it", key_name)
        return None


def redact_payload(services: Iterable[ServiceRecord]) -> str:
    """Rebuild payload for display, with every secret replaced by ``***``."""
    return build_rebuild_payload(
        dataclasses.replace(service, secret="***") for service in services
    )


# ---------------------------------------------------------------------------
# Graceful shutdown
# ---------------------------------------------------------------------------

_shutdown_event: threading.Event = threading.Event()


def _handle_signal(sig: int, frame: Any) -> None:
    """Signal handler — lets the current device finish, then stops."""
    logger.info("Received signal %s, stopping after the current device...", sig)
    _shutdown_event.set()


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


async def dry_run(
    store: ServiceStore,
    device_ids: Sequence[int],
    query_timeout: Optional[float] = None,
) -> int:
    """Print the erase and rebuild payloads for each device without SSH."""
    for device_id in device_ids:
        try:
            services = await asyncio.wait_for(
                store.fetch_services(device_id), timeout=query_timeout
            )
        except UpdaterError as exc:
            logger.error("Fetch failed for device_id=%d: %s", device_id, exc)
            return EXIT_FAILED
        except asyncio.TimeoutError:
            logger.error("Fetch timed out for device_id=%d", device_id)
            return EXIT_FAILED

        print(f"# device {device_id}: {len(services)} services")
        print(build_erase_command())
        sys.stdout.write(redact_payload(services))
    return EXIT_OK


async def reconcile_devices(
    reconciler: Reconciler,
    audit: AuditLogger,
    device_ids: Sequence[int],
    query_timeout: Optional[float] = None,
) -> int:
    """Run ``update`` for each device; stop at the first failure."""
    for device_id in device_ids:
        if _shutdown_event.is_set():
            logger.info("Shutdown requested; skipping remaining devices.")
            break

        try:
            result = await reconciler.update(device_id, query_timeout=query_timeout)
        except UpdaterError as exc:
            logger.error("Update failed for device_id=%d: %s", device_id, exc)
            await audit.log(
                "updater",
                "update",
                {
                    "device_id": device_id,
                    "error": type(exc).__name__,
                    "phases": exc.phases,
                },
                success=False,
            )
            return EXIT_FAILED

        logger.info(
            "Device %d reconciled: %d services fetched, %d pushed",
            result.device_id,
            result.fetched,
            result.applied,
        )
        await audit.log(
            "updater",
            "update",
            {
                "device_id": result.device_id,
                "fetched": result.fetched,
                "applied": result.applied,
            },
            success=True,
        )
    return EXIT_OK


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ppp-updater",
        description="Replace a RouterOS device's PPP secrets with billing data.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=_DEFAULT_CONFIG_PATH,
        help="settings.toml path (default: %(default)s)",
    )
    parser.add_argument(
        "--device-id",
        dest="device_ids",
        type=int,
        action="append",
        help="billing device id; repeat for several (default: updater.device_id)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="print the commands instead of sending them",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


async def main(args: argparse.Namespace) -> int:
    """Top-level async entry point."""
    try:
        config = load_config(args.config)
        device_ids = resolve_device_ids(args.device_ids, config)
    except (OSError, KeyError, ValueError, toml.TomlDecodeError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG

    updater_config = config.get("updater", {})
    router_config = config["router"]
    query_timeout = updater_config.get("query_timeout_seconds")
    audit_path = Path(config.get("audit", {}).get("log_path", _DEFAULT_AUDIT_PATH))

    pool = None
    audit = AuditLogger(audit_path)
    try:
        db_config = dict(config["database"])
        db_config["password"] = _optional_secret("db_password")
        try:
            pool = await get_connection_pool(db_config)
        except (OSError, asyncpg.PostgresError) as exc:
            logger.error("Database connection failed: %s", exc)
            return EXIT_CONFIG
        if not await health_check(pool):
            logger.error("Database ping failed")
            return EXIT_CONFIG

        store = ServiceStore(
            pool, fetch_batch_size=updater_config.get("fetch_batch_size", 500)
        )

        if args.dry_run:
            return await dry_run(store, device_ids, query_timeout)

        try:
            ssh = await asyncio.to_thread(
                open_ssh_client,
                router_config["address"],
                router_config["user"],
                get_secret("router_password"),
                port=router_config.get("port"),
                timeout=float(router_config.get("timeout_seconds", 5)),
                verify_host_key=bool(router_config.get("verify_host_key", False)),
            )
        except (OSError, RuntimeError, paramiko.SSHException) as exc:
            logger.error("SSH connection to %s failed: %s", router_config["address"], exc)
            return EXIT_CONFIG

        async with RouterClient(
            ssh, command_timeout=router_config.get("command_timeout_seconds")
        ) as router:
            await audit.log(
                "updater",
                "startup",
                {"router": router_config["address"], "device_ids": device_ids},
                success=True,
            )
            return await reconcile_devices(
                Reconciler(store, router), audit, device_ids, query_timeout
            )
    finally:
        try:
            await audit.close()
        except Exception:
            logger.exception("Failed to flush/close audit logger")
        if pool is not None:
            try:
                await pool.close()
            except Exception:
                logger.exception("Failed to close database pool")


def run(argv: Optional[Sequence[str]] = None) -> None:
    """Synchronous entry point (console script / systemd)."""
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # paramiko is chatty at DEBUG
    logging.getLogger("paramiko").setLevel(logging.WARNING)

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    sys.exit(asyncio.run(main(args)))


if __name__ == "__main__":
    run()
