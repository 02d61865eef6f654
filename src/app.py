"""Application entry point for the rocketnotify watcher."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
from datetime import timedelta
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

import settings
from adapters.job_queue import AsyncioJobQueue
from adapters.pachca import PachcaClient
from adapters.rocket_chat import RocketChatClient
from adapters.sqlite_storage import SQLiteUserStore
from adapters.telegram_bot_api import TelegramBotApi
from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_bot_updates import BotUpdatePoller
from adapters.telegram_notifier import TelegramSavedMessagesNotifier
from client import authorize, build_client
from core.bot_commands import BotCommandRouter
from core.config import JobOptions, NotificationConfig, PachcaConfig, PollingConfig, RetryPolicy
from core.errors import AuthError, BackendUnavailableError, ConfigError
from core.models import Credential, PasswordCredential, TokenCredential
from core.pachca_watcher import PachcaUnreadWatcher
from core.processor import UnreadChecker
from core.scheduler import CHECK_UNREAD_JOB, PollingScheduler, make_check_unread_handler
from core.sessions import SessionManager
from core.setup_wizard import SetupWizard
from core.vault import CredentialVault

NAME = "ROCKETNOTIFY"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/rocketnotify.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)
    # httpx logs full request URLs at INFO, and Bot API URLs carry the token.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _retry_policy() -> RetryPolicy:
    return RetryPolicy(attempts=settings.HTTP_ATTEMPTS, base_delay=settings.HTTP_BASE_DELAY)


def _polling_config(interval_minutes: int) -> PollingConfig:
    return PollingConfig(
        interval_minutes=interval_minutes,
        queue_threshold=settings.QUEUE_THRESHOLD,
        job_options=JobOptions(
            attempts=settings.JOB_ATTEMPTS,
            backoff_delay=settings.JOB_BACKOFF_DELAY,
        ),
    )



def _notification_config() -> NotificationConfig:
    return NotificationConfig.for_backend(
        settings.BACKEND,
        broadcast_chat_id=settings.TELEGRAM_CHANNEL_ID,
        include_breakdown=settings.INCLUDE_BREAKDOWN,
    )


def _pachca_config() -> PachcaConfig:
    return PachcaConfig(
        base_url=settings.PACHCA_BASE_URL or "",
        access_token=settings.PACHCA_ACCESS_TOKEN or "",
        chat_ids=settings.PACHCA_CHAT_IDS,
        user_id=settings.PACHCA_USER_ID,
        internal_base_url=settings.PACHCA_INTERNAL_BASE_URL,
        internal_cookie=settings.PACHCA_INTERNAL_COOKIE,
        interval_minutes=settings.PACHCA_POLLING_INTERVAL_MIN,
    )
def _single_tenant_credential() -> Optional[Credential]:
    """Deployment-level Rocket.Chat account from the environment, if any."""

    if not settings.RC_SERVER:
        return None
    if settings.RC_USER and settings.RC_PASSWORD:
        return PasswordCredential(server=settings.RC_SERVER, user=settings.RC_USER, password=settings.RC_PASSWORD)
    if settings.RC_TOKEN and settings.RC_USER_ID:
        return TokenCredential(
            server=settings.RC_SERVER,
            user_id=settings.RC_USER_ID,
            token=settings.RC_TOKEN,
            instance_id=settings.RC_INSTANCE_ID,
        )
    raise ConfigError("RC_SERVER needs RC_USER/RC_PASSWORD or RC_TOKEN/RC_USER_ID")


class _Runtime:
    """Wires adapters into the core and owns their lifecycle."""

    def __init__(self, notification_config: NotificationConfig) -> None:
        self.notification_config = notification_config
        self.bot_api: Optional[TelegramBotApi] = None
        self.telethon = None

    async def notifier(self):
        # Select the notification adapter based on configuration to keep the
        # core independent from delivery details.
        if settings.NOTIFICATION_METHOD == "bot":
            if not settings.TELEGRAM_BOT_TOKEN:
                raise ConfigError("Missing required env: TELEGRAM_BOT_TOKEN")
            self.bot_api = TelegramBotApi(settings.TELEGRAM_BOT_TOKEN)
            notifier = TelegramBotNotifier(self.bot_api, title=self.notification_config.backend_title)
        elif settings.NOTIFICATION_METHOD == "saved_messages":
            self.telethon = build_client()
            await self.telethon.connect()
            if not await self.telethon.is_user_authorized():
                raise ConfigError("Telegram session is not authorized; run `rocketnotify login` first")
            notifier = TelegramSavedMessagesNotifier(self.telethon, title=self.notification_config.backend_title)
        else:
            raise ConfigError("notification_method must be 'bot' or 'saved_messages'")
        LOGGER.info("Selected notification method - %s", settings.NOTIFICATION_METHOD)
        return notifier

    async def close(self) -> None:
        if self.bot_api is not None:
            await self.bot_api.aclose()
        if self.telethon is not None:
            await self.telethon.disconnect()


def _build_rocket_chat(runtime: _Runtime, notifier) -> tuple[SQLiteUserStore, SessionManager, UnreadChecker]:
    store = SQLiteUserStore(settings.DB_PATH)
    store.init_db()
    vault = CredentialVault(settings.RC_TOKEN_SALT)
    backend = RocketChatClient(retry_policy=_retry_policy(), timeout=settings.HTTP_TIMEOUT)
    sessions = SessionManager(backend, vault, store, retain_passwords=settings.RETAIN_PASSWORDS)
    checker = UnreadChecker(sessions, store, notifier, runtime.notification_config)
    return store, sessions, checker


async def _register_single_tenant(sessions: SessionManager) -> None:
    credential = _single_tenant_credential()
    if credential is None:
        return
    if not settings.SINGLE_TENANT_ID:
        raise ConfigError("TELEGRAM_CHANNEL_ID (or RC_SUBSCRIBER_ID) is required with RC_SERVER")
    try:
        await sessions.register(settings.SINGLE_TENANT_ID, credential)
    except (AuthError, BackendUnavailableError) as exc:
        LOGGER.error("Could not register the Rocket.Chat account from the environment: %s", exc)
        return
    LOGGER.info("Registered Rocket.Chat account from the environment")


def _install_stop_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform; Ctrl+C still raises there.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)


async def _serve_rocket_chat(runtime: _Runtime) -> None:
    notifier = await runtime.notifier()
    store, sessions, checker = _build_rocket_chat(runtime, notifier)
    await _register_single_tenant(sessions)

    queue = AsyncioJobQueue(workers=settings.QUEUE_WORKERS)
    queue.register(CHECK_UNREAD_JOB, make_check_unread_handler(store, checker))
    queue.start()

    scheduler = PollingScheduler(store, checker, _polling_config(settings.POLLING_INTERVAL_MIN), job_queue=queue)

    poller_task: Optional[asyncio.Task] = None
    if runtime.bot_api is not None:
        wizard = SetupWizard(store, sessions, ttl=timedelta(minutes=settings.SETUP_TTL_MINUTES))
        poller = BotUpdatePoller(runtime.bot_api, BotCommandRouter(store, sessions, wizard))
        await poller.prepare()
        poller_task = asyncio.create_task(poller.run(), name="bot-updates")

    stop = asyncio.Event()
    _install_stop_handlers(stop)
    scheduler.start()
    LOGGER.info("Watcher running. Press Ctrl+C to stop.")
    try:
        await stop.wait()
    finally:
        await scheduler.stop()
        if poller_task is not None:
            poller_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await poller_task
        await queue.close()


def _build_pachca_watcher(runtime: _Runtime, notifier) -> PachcaUnreadWatcher:
    config = _pachca_config()
    client = PachcaClient.from_config(config, retry_policy=_retry_policy(), timeout=settings.HTTP_TIMEOUT)
    return PachcaUnreadWatcher.from_config(
        client,
        notifier,
        config,
        destination=runtime.notification_config.broadcast_chat_id,
    )


async def _serve_pachca(runtime: _Runtime) -> None:
    watcher = _build_pachca_watcher(runtime, await runtime.notifier())
    stop = asyncio.Event()
    _install_stop_handlers(stop)
    watcher.start()
    try:
        await stop.wait()
    finally:
        await watcher.stop()


async def _serve() -> None:
    runtime = _Runtime(_notification_config())
    try:
        if settings.BACKEND == "pachca":
            await _serve_pachca(runtime)
        else:
            await _serve_rocket_chat(runtime)
    finally:
        await runtime.close()


async def _check_once() -> None:
    """Run a single polling cycle inline and print the counters."""

    runtime = _Runtime(_notification_config())
    try:
        notifier = await runtime.notifier()
        if settings.BACKEND == "pachca":
            total = await _build_pachca_watcher(runtime, notifier).run_cycle()
            print(f"Pachca unread: {total}")
            return
        store, sessions, checker = _build_rocket_chat(runtime, notifier)
        await _register_single_tenant(sessions)
        scheduler = PollingScheduler(store, checker, _polling_config(settings.POLLING_INTERVAL_MIN))
        report = await scheduler.run_cycle()
        if report is not None:
            print(
                f"checked={report.checked} alerted={report.alerted} "
                f"skipped={report.skipped} failed={report.failed}"
            )
    finally:
        await runtime.close()


async def _login() -> None:
    client = build_client()
    await client.connect()
    try:
        await authorize(client)
        me = await client.get_me()
        LOGGER.info("Logged in as: %s", getattr(me, "first_name", "unknown"))
    finally:
        await client.disconnect()


def _run(coro_factory) -> None:
    _print_banner()
    _configure_logging()
    try:
        asyncio.run(coro_factory())
    except ConfigError as exc:
        LOGGER.error("Configuration error: %s", exc)
        raise SystemExit(f"Configuration error: {exc}") from exc
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="rocketnotify")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the watcher")
    subparsers.add_parser("check", help="Run one polling cycle and exit")
    subparsers.add_parser("login", help="Create the Telegram user session for saved_messages delivery")

    args = parser.parse_args(argv)
    if args.command == "check":
        _run(_check_once)
        return
    if args.command == "login":
        _run(_login)
        return
    _run(_serve)


if __name__ == "__main__":
    main()
