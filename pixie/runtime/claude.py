"""
Anthropic runtime — Claude sessions with a local tool-use loop.

``AnthropicRuntime`` owns one ``anthropic.AsyncAnthropic`` client and hands
out ``ClaudeSession`` objects. A session is a system prompt, a model, and a
transcript; ``send_and_wait`` runs one turn:

    user prompt → messages.create → tool_use blocks? → ToolExecutor
                → tool_result blocks → messages.create → … → end_turn

Transcripts are kept by the runtime under the session id, so destroying a
session and creating a new one with the same id resumes the conversation.
This is what lets a destroyed delegate come back with its history intact.

The whole turn is bounded by the caller's timeout. On expiry the transcript is
rolled back to where the turn started and None is returned; a cancelled turn
is rolled back the same way before the cancellation propagates.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import anthropic
import structlog

from pixie.config import AnthropicConfig
from pixie.errors import RuntimeStartError
from pixie.runtime.base import (
    AgentRuntime,
    AssistantMessageEvent,
    ModelInfo,
    RuntimeSession,
    SessionErrorEvent,
    SessionIdleEvent,
    SessionOptions,
)
from pixie.runtime.retry import RetryConfig, with_retries
from pixie.tools.executor import ToolExecutor
from pixie.tools.filesystem import ALLOWED_FS_PATHS
from pixie.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)


def extract_text(response: Any) -> str:
    """All text content of a response, ignoring tool calls."""
    parts = [block.text for block in response.content if block.type == "text"]
    return "\n".join(part for part in parts if part)


def extract_tool_calls(response: Any) -> list[dict[str, Any]]:
    """All tool_use blocks of a response."""
    return [
        {"id": block.id, "name": block.name, "input": block.input}
        for block in response.content
        if block.type == "tool_use"
    ]


def _content_params(response: Any) -> list[dict[str, Any]]:
    """Response content blocks converted to request params for the transcript."""
    params: list[dict[str, Any]] = []
    for block in response.content:
        if block.type == "text":
            params.append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            params.append(
                {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
            )
    return params


class ClaudeSession(RuntimeSession):
    """One conversational context on the Messages API."""

    def __init__(
        self,
        runtime: "AnthropicRuntime",
        options: SessionOptions,
        transcript: list[dict[str, Any]],
    ) -> None:
        super().__init__(options.session_id, options.model)
        self._runtime = runtime
        self._options = options
        self._transcript = transcript
        self._turn_lock = asyncio.Lock()

    @property
    def transcript(self) -> list[dict[str, Any]]:
        return self._transcript

    async def send_and_wait(self, prompt: str, timeout: float) -> Optional[str]:
        if self._destroyed:
            raise RuntimeError(f"Session {self.session_id} has been destroyed.")

        async with self._turn_lock:
            checkpoint = len(self._transcript)
            self._transcript.append({"role": "user", "content": prompt})
            try:
                reply = await asyncio.wait_for(self._run_turn(), timeout=timeout)
            except asyncio.TimeoutError:
                del self._transcript[checkpoint:]
                logger.warning(
                    "claude_session.reply_timeout",
                    session_id=self.session_id,
                    timeout=timeout,
                )
                await self._emit(SessionIdleEvent(session_id=self.session_id))
                return None
            except asyncio.CancelledError:
                # Never keep a tool_use block without its tool_result.
                del self._transcript[checkpoint:]
                logger.warning("claude_session.turn_cancelled", session_id=self.session_id)
                raise
            except Exception as exc:
                del self._transcript[checkpoint:]
                logger.error(
                    "claude_session.turn_failed",
                    session_id=self.session_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                await self._emit(
                    SessionErrorEvent(
                        session_id=self.session_id,
                        error_type=type(exc).__name__,
                        message=str(exc),
                    )
                )
                raise

        await self._emit(SessionIdleEvent(session_id=self.session_id))
        return reply

    async def _run_turn(self) -> str:
        working_dir = self._options.working_directory
        if working_dir:
            ALLOWED_FS_PATHS.set((Path(working_dir).resolve(),))

        allowed = self._allowed_tools()
        api_tools = self._runtime.tools.get_api_tools(allowed) if allowed else []
        rounds = 0
        texts: list[str] = []

        while True:
            rounds += 1
            response = await self._runtime.create_message(
                model=self.model,
                system_prompt=self._options.system_prompt,
                messages=self._transcript,
                tools=api_tools,
            )
            self._transcript.append({"role": "assistant", "content": _content_params(response)})

            text = extract_text(response)
            if text:
                texts.append(text)
                await self._emit(AssistantMessageEvent(session_id=self.session_id, content=text))

            calls = extract_tool_calls(response)
            if response.stop_reason != "tool_use" or not calls:
                return text or "\n\n".join(texts)

            results = []
            for call in calls:
                result = await self._runtime.executor.execute(
                    call["id"], call["name"], call["input"], allowed_tools=set(allowed)
                )
                results.append(result.to_api_block())
            self._transcript.append({"role": "user", "content": results})

            if rounds >= self._runtime.max_tool_rounds:
                logger.warning(
                    "claude_session.tool_round_limit",
                    session_id=self.session_id,
                    rounds=rounds,
                )
                return "\n\n".join(texts) or "(stopped after reaching the tool-call limit)"

    def _allowed_tools(self) -> list[str]:
        if self._options.permission_policy != "always_approve":
            return []
        if self._options.tools is None:
            return self._runtime.tools.names()
        return list(self._options.tools)

    async def destroy(self) -> None:
        await super().destroy()
        self._runtime.forget(self)


class AnthropicRuntime(AgentRuntime):
    """Claude-backed runtime; one client, many sessions."""

    def __init__(
        self,
        config: AnthropicConfig,
        tools: ToolRegistry,
        executor: ToolExecutor,
        *,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ) -> None:
        self._config = config
        self.tools = tools
        self.executor = executor
        self.max_tool_rounds = config.max_tool_rounds
        self._client = client
        self._sessions: dict[str, ClaudeSession] = {}
        self._transcripts: dict[str, list[dict[str, Any]]] = {}
        self._retry_config = RetryConfig(
            max_retries=config.retry_max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )

    async def start(self) -> None:
        if self._client is not None:
            return
        try:
            kwargs: dict[str, Any] = {
                "timeout": self._config.request_timeout_seconds,
                # Retries are handled by with_retries.
                "max_retries": 0,
            }
            if self._config.api_key:
                kwargs["api_key"] = self._config.api_key
            else:
                kwargs["auth_token"] = self._config.auth_token
            self._client = anthropic.AsyncAnthropic(**kwargs)
        except Exception as exc:
            raise RuntimeStartError(f"Failed to start the Anthropic client: {exc}") from exc
        logger.info(
            "anthropic_runtime.started",
            auth_method="api_key" if self._config.api_key else "auth_token",
            base_url=str(self._client.base_url),
        )

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            raise RuntimeStartError("The Anthropic runtime has not been started.")
        return self._client

    async def list_models(self) -> list[ModelInfo]:
        allow = self._config.model_allowlist
        models: list[ModelInfo] = []
        try:
            async for model in self.client.models.list():
                if allow and not any(model.id == a or model.id.startswith(a) for a in allow):
                    continue
                models.append(
                    ModelInfo(
                        id=model.id,
                        display_name=getattr(model, "display_name", None) or model.id,
                        billing_multiplier=self.multiplier_for(model.id),
                    )
                )
        except anthropic.APIError as exc:
            raise RuntimeStartError(f"Could not list models: {exc}") from exc
        logger.info("anthropic_runtime.models_listed", count=len(models))
        return models

    def multiplier_for(self, model_id: str) -> Optional[float]:
        """Family multiplier from configuration, None when no family matches."""
        lowered = model_id.lower()
        for family, multiplier in self._config.model_multipliers.items():
            if family in lowered:
                return multiplier
        return None

    async def create_session(self, options: SessionOptions) -> ClaudeSession:
        _ = self.client
        if not options.model:
            raise ValueError("A session needs a model.")
        transcript = self._transcripts.setdefault(options.session_id, [])
        session = ClaudeSession(self, options, transcript)
        self._sessions[options.session_id] = session
        logger.info(
            "anthropic_runtime.session_created",
            session_id=options.session_id,
            model=options.model,
            resumed_messages=len(transcript),
        )
        return session

    def forget(self, session: ClaudeSession) -> None:
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]

    async def create_message(
        self,
        *,
        model: str,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> anthropic.types.Message:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": self._config.max_tokens,
            "system": system_prompt,
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools

        async def _create() -> anthropic.types.Message:
            return await self.client.messages.create(**kwargs)

        try:
            response = await with_retries(_create, config=self._retry_config)
        except anthropic.RateLimitError as e:
            logger.warning("anthropic_runtime.rate_limited", error=str(e))
            raise
        except anthropic.APIError as e:
            logger.error(
                "anthropic_runtime.api_error",
                error=str(e),
                status=getattr(e, "status_code", None),
            )
            raise

        usage = getattr(response, "usage", None)
        logger.debug(
            "anthropic_runtime.message_complete",
            model=model,
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
            stop_reason=response.stop_reason,
        )
        return response

    async def stop(self) -> list[Exception]:
        errors: list[Exception] = []
        for session in list(self._sessions.values()):
            try:
                await session.destroy()
            except Exception as exc:
                errors.append(exc)
        self._sessions.clear()
        if self._client is not None:
            try:
                await self._client.close()
            except Exception as exc:
                errors.append(exc)
            self._client = None
        logger.info("anthropic_runtime.stopped", errors=len(errors))
        return errors
