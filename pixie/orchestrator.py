"""
Orchestrator — Pixie's process lifecycle.

Startup (in order):
  1. Clear delegate configs left over from the previous process
  2. Record tool scripts dropped into the toolbox folder by hand
  3. Start the AI runtime and build the model catalog from its model list
  4. Register tools and build the primary system prompt
  5. Start the operator channel and offer the model choice

The primary session is not created at startup: choosing a model only records
the choice, and the session is constructed by the first operator message.

Per operator message (one at a time, in arrival order):
  snapshot watched sources → bill one request → send to the primary session →
  write a request-log line → deliver the reply (or a "no reply" notice) →
  compare sources and restart if anything changed.

Shutdown stops the channel, destroys every delegate, gives the primary session
a short grace period to close, then stops the runtime. Each step logs its
failure and the next one still runs. ``run()`` returns the process exit code:
0 for a normal stop, 42 when a restart was requested, 1 when startup failed.
"""

from __future__ import annotations

import asyncio
import signal
import time
from typing import Optional

import structlog

from pixie.channels.base import OperatorChannel
from pixie.channels.telegram_channel import TelegramChannel
from pixie.config import AssistantConfig, PixieConfig
from pixie.delegation.registry import DelegateRegistry
from pixie.delegation.store import ConfigStore
from pixie.delegation.tools import DelegationTools, register_delegation_tools
from pixie.errors import (
    ModelNotSelectedError,
    PrimarySessionError,
    RuntimeStartError,
)
from pixie.notes import NoteStore
from pixie.persona import build_system_prompt
from pixie.primary import PrimarySessionController
from pixie.runtime.base import (
    AgentRuntime,
    AssistantMessageEvent,
    RuntimeSession,
    SessionErrorEvent,
    SessionEvent,
    SessionIdleEvent,
    SessionOptions,
)
from pixie.runtime.claude import AnthropicRuntime
from pixie.skills import SkillRegistry
from pixie.skills.loader import load_registry
from pixie.snapshot import detect_changes, take_snapshot
from pixie.toolbox import ToolScriptLibrary
from pixie.tools.builtin import register_builtin_tools
from pixie.tools.executor import ToolExecutor
from pixie.tools.filesystem import register_file_tools
from pixie.tools.registry import ToolRegistry
from pixie.types import ChoiceSpec, ModelCatalogEntry
from pixie.usage.ledger import UsageLedger
from pixie.usage.request_log import RequestLog, RequestLogEntry, make_excerpt

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
RESTART_EXIT_CODE = 42

# Delegated sessions get every tool except the ones that create more delegates.
_DELEGATE_EXCLUDED_CATEGORIES = ("delegation",)


class Orchestrator:
    """Wires the runtime, the operator channel and the stores together."""

    def __init__(
        self,
        settings: AssistantConfig,
        runtime: AgentRuntime,
        channel: OperatorChannel,
        *,
        tools: Optional[ToolRegistry] = None,
    ) -> None:
        self._settings = settings
        self.runtime = runtime
        self.channel = channel
        self.tools = tools if tools is not None else ToolRegistry()

        self.notes = NoteStore(settings.notes_dir)
        self.toolbox = ToolScriptLibrary(
            settings.tools_dir,
            self.notes,
            timeout=settings.tool_timeout_seconds,
            cwd=settings.working_dir,
        )
        self.request_log = RequestLog(settings.request_log_path)
        self.delegates = DelegateRegistry(
            runtime,
            ConfigStore(settings.delegates_dir),
            working_directory=str(settings.working_dir),
            on_error=self._on_delegate_error,
        )
        self.primary = PrimarySessionController(self._create_primary_session)

        self.skills = SkillRegistry()
        self.catalog: list[ModelCatalogEntry] = []
        self.ledger: Optional[UsageLedger] = None
        self.system_prompt = ""

        self._request_lock = asyncio.Lock()
        self._shutdown_requested = asyncio.Event()
        self._exit_code = EXIT_OK
        self._shut_down = False
        self._pending_summary: Optional[str] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def exit_code(self) -> int:
        return self._exit_code

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested.is_set()

    async def start(self) -> None:
        """Bring every component up; raises on an unrecoverable failure."""
        await self.delegates.reset_all()

        synced = self.toolbox.sync()
        if synced:
            logger.info("orchestrator.toolbox_synced", added=synced)

        self.skills = load_registry(self._settings.skills_dir)

        await self.runtime.start()
        models = await self.runtime.list_models()
        self.catalog = [
            ModelCatalogEntry(
                id=m.id,
                display_name=m.display_name,
                billing_multiplier=1.0 if m.billing_multiplier is None else m.billing_multiplier,
            )
            for m in models
        ]
        if not self.catalog:
            raise RuntimeStartError("The runtime reported no available models.")
        self.ledger = UsageLedger(self.catalog)

        self._register_tools()
        self.system_prompt = build_system_prompt(self._settings.persona_file, self.skills)

        self.channel.bind(self)
        await self.channel.start()
        logger.info(
            "orchestrator.started",
            models=len(self.catalog),
            tools=len(self.tools),
            skills=len(self.skills),
        )
        await self.present_model_choice()

    def _register_tools(self) -> None:
        delegation = DelegationTools(
            self.delegates,
            self.ledger,
            default_timeout=self._settings.delegate_timeout_seconds,
        )
        register_delegation_tools(self.tools, delegation)
        register_builtin_tools(
            self.tools,
            notes=self.notes,
            toolbox=self.toolbox,
            skills=self.skills,
            skills_dir=self._settings.skills_dir,
        )
        register_file_tools(self.tools)
        self.delegates.session_tools = self.tools.names(
            exclude_categories=_DELEGATE_EXCLUDED_CATEGORIES
        )

    async def run(self) -> int:
        """Start, serve until shutdown is requested, shut down; returns the exit code."""
        loop = asyncio.get_running_loop()
        installed = self._install_signal_handlers(loop)
        try:
            try:
                await self.start()
            except Exception as exc:
                logger.error(
                    "orchestrator.startup_failed",
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                self._exit_code = EXIT_FATAL
                await self.shutdown()
                return EXIT_FATAL

            await self._shutdown_requested.wait()
            await self.shutdown()
            return self._exit_code
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    def request_shutdown(self, exit_code: int = EXIT_OK) -> None:
        """Ask ``run()`` to shut down; the first requested exit code wins."""
        if self._shutdown_requested.is_set():
            return
        self._exit_code = exit_code
        self._shutdown_requested.set()
        logger.info("orchestrator.shutdown_requested", exit_code=exit_code)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[signal.Signals]:
        """Install SIGINT/SIGTERM handlers for graceful shutdown."""
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, EXIT_OK)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                pass
        return installed

    async def shutdown(self) -> None:
        """Release everything; never raises, runs once."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("orchestrator.shutting_down", exit_code=self._exit_code)

        try:
            await self.channel.stop()
        except Exception:
            logger.exception("orchestrator.channel_stop_failed")

        try:
            for exc in await self.delegates.destroy_all():
                logger.warning("orchestrator.delegate_destroy_failed", error=str(exc))
        except Exception:
            logger.exception("orchestrator.delegates_destroy_failed")

        try:
            await asyncio.wait_for(
                self.primary.destroy(), timeout=self._settings.shutdown_grace_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "orchestrator.primary_destroy_timeout",
                grace_seconds=self._settings.shutdown_grace_seconds,
            )
        except Exception as exc:
            logger.warning("orchestrator.primary_destroy_failed", error=str(exc))

        try:
            for exc in await self.runtime.stop():
                logger.warning("orchestrator.runtime_cleanup_error", error=str(exc))
        except Exception:
            logger.exception("orchestrator.runtime_stop_failed")

        logger.info("orchestrator.stopped", exit_code=self._exit_code)

    # ------------------------------------------------------------------
    # Operator callbacks
    # ------------------------------------------------------------------

    async def on_message(self, text: str) -> None:
        """Handle one operator message; messages are processed one at a time."""
        async with self._request_lock:
            await self.handle_operator_message(text)

    async def on_choice(self, value: str) -> None:
        await self.select_model(value)

    async def on_command(self, name: str) -> None:
        if name == "start":
            if self.primary.has_model:
                await self.channel.send_text(self.status_text())
            else:
                await self.present_model_choice()
        elif name == "status":
            await self.channel.send_text(self.status_text())
        elif name == "usage":
            await self.channel.send_text(self.usage_text())
        elif name == "restart":
            await self.notify("Restart requested by the operator.")
            self.request_shutdown(RESTART_EXIT_CODE)
        else:
            await self.channel.send_text(f"Unknown command: /{name}")

    # ------------------------------------------------------------------
    # Model choice
    # ------------------------------------------------------------------

    async def present_model_choice(self) -> None:
        lines = [f"• {entry.label} ({entry.id})" for entry in self.catalog]
        prompt = "Pixie is up. Choose the model for this session:\n\n" + "\n".join(lines)
        await self.channel.present_choices(
            prompt, [ChoiceSpec(label=entry.label, value=entry.id) for entry in self.catalog]
        )

    def _catalog_entry(self, model_id: str) -> Optional[ModelCatalogEntry]:
        for entry in self.catalog:
            if entry.id == model_id:
                return entry
        return None

    async def select_model(self, model_id: str) -> bool:
        entry = self._catalog_entry(model_id)
        if entry is None:
            logger.warning("orchestrator.unknown_model_choice", model=model_id)
            await self.channel.send_text(f"Unknown model: {model_id}")
            return False
        if not self.primary.select_model(model_id):
            await self.channel.send_text(
                f"The model is already set to {self.primary.model}. "
                "Use /restart to choose again."
            )
            return False
        await self.channel.send_text(
            f"Model set to {entry.label}. Send a message to begin."
        )
        return True

    async def _create_primary_session(self, model: str) -> RuntimeSession:
        session = await self.runtime.create_session(
            SessionOptions(
                session_id=self._settings.primary_session_id,
                model=model,
                system_prompt=self.system_prompt,
                working_directory=str(self._settings.working_dir),
            )
        )
        session.subscribe(self._on_primary_event)
        multiplier = self.ledger.resolve_multiplier(model) if self.ledger else 1.0
        await self.notify(
            f"Session {session.session_id} created with model {model} (×{multiplier:g})."
        )
        return session

    # ------------------------------------------------------------------
    # Request dispatch
    # ------------------------------------------------------------------

    async def handle_operator_message(self, text: str) -> None:
        if self.shutdown_requested:
            logger.info("orchestrator.message_during_shutdown", text=make_excerpt(text))
            await self.channel.send_text(
                "Pixie is restarting and did not process this message. Please send it again in a moment."
            )
            return

        try:
            session = await self.primary.ensure_session()
        except ModelNotSelectedError:
            await self.channel.send_text("Please choose a model from the buttons above first.")
            return
        except PrimarySessionError as exc:
            await self.notify_error(str(exc))
            return

        watch_paths = self._settings.resolved_watch_paths()
        before = take_snapshot(watch_paths)

        model = session.model
        multiplier = self.ledger.record_request(model)
        timeout = self._settings.reply_timeout_seconds
        started = time.monotonic()
        reply: Optional[str] = None
        failure: Optional[Exception] = None
        try:
            reply = await session.send_and_wait(text, timeout)
        except Exception as exc:
            failure = exc
        duration_ms = int((time.monotonic() - started) * 1000)

        if failure is not None:
            outcome = "error"
        elif reply is None:
            outcome = "no_reply"
        else:
            outcome = "reply"
        self._log_request(text, model, multiplier, duration_ms, outcome)

        if failure is not None:
            logger.error("orchestrator.request_failed", error=str(failure))
            await self.notify_error(f"Error while processing your message: {failure}")
        elif reply is None:
            await self.channel.send_text(
                f"No reply (timed out after {timeout:g}s). Send the message again to retry."
            )
        else:
            await self.channel.send_text(reply)

        await self._flush_summary()

        changes = detect_changes(before, take_snapshot(watch_paths), self._settings.working_dir)
        if changes:
            listing = "\n".join(f"• {c}" for c in changes)
            await self.notify(f"Source files changed:\n{listing}\nRestarting…")
            self.request_shutdown(RESTART_EXIT_CODE)

    def _log_request(
        self, text: str, model: str, multiplier: float, duration_ms: int, outcome: str
    ) -> None:
        delegate_usage = self.ledger.drain_delegate_usage()
        entry = RequestLogEntry(
            message_excerpt=make_excerpt(text),
            model=model,
            multiplier=multiplier,
            delegate_usage=delegate_usage,
            total_premium_units=multiplier + sum(d.premium_units for d in delegate_usage),
            duration_ms=duration_ms,
            outcome=outcome,
        )
        try:
            self.request_log.append(entry)
        except OSError as exc:
            logger.error("orchestrator.request_log_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------

    def _on_primary_event(self, event: SessionEvent) -> None:
        if isinstance(event, SessionIdleEvent):
            conversation = self.ledger.end_conversation() if self.ledger else None
            if conversation is not None:
                self._pending_summary = self.ledger.format_summary(conversation)
        elif isinstance(event, SessionErrorEvent):
            logger.error(
                "orchestrator.primary_session_error",
                error_type=event.error_type,
                error=event.message,
            )
        elif isinstance(event, AssistantMessageEvent):
            logger.debug("orchestrator.assistant_message", length=len(event.content))

    async def _flush_summary(self) -> None:
        summary, self._pending_summary = self._pending_summary, None
        if summary:
            await self.notify(summary)

    async def _on_delegate_error(self, delegate_id: str, event: SessionErrorEvent) -> None:
        await self.notify_error(f"Delegate {delegate_id} error: {event.message}")

    # ------------------------------------------------------------------
    # Notifications and reports
    # ------------------------------------------------------------------

    async def notify(self, message: str) -> None:
        """Log *message* and, once the channel is up, send it to the operator."""
        logger.info("orchestrator.notify", message=message)
        await self._send_notification(f"📋 {message}")

    async def notify_error(self, message: str) -> None:
        logger.error("orchestrator.notify_error", message=message)
        await self._send_notification(f"⚠️ {message}")

    async def _send_notification(self, text: str) -> None:
        if not self.channel.started:
            return
        try:
            await self.channel.send_text(text)
        except Exception as exc:
            logger.warning("orchestrator.notification_failed", error=str(exc))

    def status_text(self) -> str:
        model = self.primary.model
        if model is None:
            model_line = "Model: not selected"
        else:
            multiplier = self.ledger.resolve_multiplier(model) if self.ledger else 1.0
            model_line = f"Model: {model} (×{multiplier:g})"
        active = self.delegates.list_active()
        lines = [
            model_line,
            f"Primary session: {self.primary.state.name}",
            f"Active delegates: {len(active)}" + (f" ({', '.join(active)})" if active else ""),
            f"Stored delegates: {len(self.delegates.list_configs())}",
        ]
        return "\n".join(lines)

    def usage_text(self) -> str:
        if self.ledger is None or self.ledger.session_requests == 0:
            return "No usage recorded yet."
        conversation = self.ledger.current
        if conversation is None:
            # Idle closes the conversation after every reply; report the last one.
            conversation = self.ledger.history[-1]
        lines = [
            self.ledger.format_summary(conversation),
            f"Lifetime: {self.ledger.session_requests} requests, "
            f"{self.ledger.session_total:g} premium units",
        ]
        delegate_usage = self.ledger.delegate_usage()
        if delegate_usage:
            lines.append("")
            lines.append(f"Delegated sessions: {self.ledger.delegate_total:g} units")
            lines.extend(
                f"• {d.delegate_id} ({d.model}, ×{d.multiplier:g}): "
                f"{d.requests} requests, {d.premium_units:g} units"
                for d in delegate_usage
            )
        return "\n".join(lines)


def build_orchestrator(config: PixieConfig) -> Orchestrator:
    """Production wiring: Anthropic runtime and Telegram channel."""
    tools = ToolRegistry()
    executor = ToolExecutor(tools, default_timeout=config.assistant.tool_timeout_seconds)
    runtime = AnthropicRuntime(config.anthropic, tools, executor)
    channel = TelegramChannel(config.telegram)
    return Orchestrator(config.assistant, runtime, channel, tools=tools)
