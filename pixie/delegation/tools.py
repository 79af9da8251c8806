"""
Delegation tools — how the primary session creates and drives delegated sessions.

Five tools are exposed to the primary session:

    create_delegate     absent → active; returns the new delegate id
    send_to_delegate    sends a sub-task (rehydrating if needed), bills usage
    list_delegates      stored configs with their active flag
    find_delegates      substring search over descriptions
    destroy_delegate    active → configured; the config is kept

Model-supplied arguments are validated into typed request models before they
reach the registry or the ledger. Every failure is returned to the model as
``{"error": ...}`` so it can decide whether to retry, pick another model, or
tell the operator.
"""

from __future__ import annotations

import json
import time
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ValidationError

from pixie.delegation.models import (
    CreateDelegateRequest,
    DelegateCallUsage,
    DelegateSummary,
    DestroyDelegateRequest,
    FindDelegatesRequest,
    SendToDelegateRequest,
    SendToDelegateResponse,
    SessionConfig,
    ToolError,
)
from pixie.delegation.registry import DelegateRegistry
from pixie.errors import DelegateCreationError
from pixie.tools.registry import ToolDefinition, ToolRegistry
from pixie.usage.ledger import UsageLedger

logger = structlog.get_logger(__name__)

NO_REPLY_TEXT = "(no reply)"


def _error(message: str) -> str:
    return ToolError(error=message).model_dump_json()


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "Invalid arguments: " + "; ".join(parts)


def _summary(config: SessionConfig, delegates: DelegateRegistry) -> dict[str, Any]:
    return DelegateSummary(
        id=config.id,
        description=config.description,
        model=config.model,
        created_at=config.created_at,
        is_active=delegates.is_active(config.id),
    ).model_dump(mode="json")


def _dump(model: BaseModel) -> str:
    return model.model_dump_json()


class DelegationTools:
    """Typed handlers behind the delegation tool definitions."""

    def __init__(
        self,
        delegates: DelegateRegistry,
        ledger: UsageLedger,
        *,
        default_timeout: float = 60.0,
    ) -> None:
        self._delegates = delegates
        self._ledger = ledger
        self._default_timeout = default_timeout

    async def create_delegate(self, **kwargs: Any) -> str:
        try:
            request = CreateDelegateRequest.model_validate(kwargs)
        except ValidationError as exc:
            return _error(_validation_message(exc))
        try:
            handle = await self._delegates.create(
                request.description, request.model, request.system_prompt
            )
        except DelegateCreationError as exc:
            return _error(str(exc))
        return _dump(
            DelegateSummary(
                id=handle.config.id,
                description=handle.config.description,
                model=handle.config.model,
                created_at=handle.config.created_at,
                is_active=True,
            )
        )

    async def send_to_delegate(self, **kwargs: Any) -> str:
        try:
            request = SendToDelegateRequest.model_validate(kwargs)
        except ValidationError as exc:
            return _error(_validation_message(exc))

        try:
            handle = await self._delegates.get_or_create(request.delegate_id)
        except DelegateCreationError as exc:
            return _error(str(exc))
        if handle is None:
            return _error(f"Delegate {request.delegate_id} not found")

        timeout = request.timeout_seconds or self._default_timeout
        started = time.monotonic()
        try:
            reply: Optional[str] = await handle.session.send_and_wait(request.message, timeout)
        except Exception as exc:
            logger.error(
                "delegation_tools.send_failed",
                delegate_id=request.delegate_id,
                error=str(exc),
            )
            return _error(f"Delegate {request.delegate_id} failed: {exc}")
        duration_ms = int((time.monotonic() - started) * 1000)

        multiplier = self._ledger.resolve_multiplier(handle.config.model)
        self._ledger.record_delegate_request(request.delegate_id, handle.config.model)
        logger.info(
            "delegation_tools.delegate_replied",
            delegate_id=request.delegate_id,
            timed_out=reply is None,
            duration_ms=duration_ms,
        )
        return _dump(
            SendToDelegateResponse(
                delegate_id=request.delegate_id,
                response=reply if reply is not None else NO_REPLY_TEXT,
                timed_out=reply is None,
                usage=DelegateCallUsage(
                    model=handle.config.model,
                    multiplier=multiplier,
                    premium_units=multiplier,
                    duration_ms=duration_ms,
                ),
            )
        )

    async def list_delegates(self) -> str:
        configs = self._delegates.list_configs()
        return _json_list([_summary(c, self._delegates) for c in configs])

    async def find_delegates(self, **kwargs: Any) -> str:
        try:
            request = FindDelegatesRequest.model_validate(kwargs)
        except ValidationError as exc:
            return _error(_validation_message(exc))
        matches = self._delegates.find_similar(request.description)
        return _json_list([_summary(c, self._delegates) for c in matches])

    async def destroy_delegate(self, **kwargs: Any) -> str:
        try:
            request = DestroyDelegateRequest.model_validate(kwargs)
        except ValidationError as exc:
            return _error(_validation_message(exc))
        try:
            destroyed = await self._delegates.destroy(request.delegate_id)
        except Exception as exc:
            return _error(f"Failed to destroy {request.delegate_id}: {exc}")
        if not destroyed:
            return _error(f"Delegate {request.delegate_id} is not active")
        return json.dumps({"destroyed": request.delegate_id, "config_kept": True})


def _json_list(items: list[dict[str, Any]]) -> str:
    return json.dumps({"count": len(items), "delegates": items}, ensure_ascii=False)


def register_delegation_tools(registry: ToolRegistry, tools: DelegationTools) -> None:
    """Register the five delegation tools with their handlers."""
    registry.register(
        ToolDefinition(
            name="create_delegate",
            description=(
                "Create a delegated session: a separate assistant with its own model "
                "and system prompt, suited to a focused sub-task (a translator, a "
                "code reviewer, a researcher). Before creating one, call "
                "find_delegates to reuse an existing delegate with a similar "
                "description. Returns the delegate id."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "description": {
                        "type": "string",
                        "description": "What this delegate is for, e.g. 'poetry translator'.",
                    },
                    "model": {
                        "type": "string",
                        "description": "Model id for the delegate, e.g. 'claude-sonnet-4-5'.",
                    },
                    "system_prompt": {
                        "type": "string",
                        "description": "System prompt defining the delegate's role and behaviour.",
                    },
                },
                "required": ["description", "model", "system_prompt"],
            },
            handler=tools.create_delegate,
            category="delegation",
        )
    )
    registry.register(
        ToolDefinition(
            name="send_to_delegate",
            description=(
                "Send a message to a delegated session and wait for its reply. A "
                "destroyed delegate is recreated automatically from its stored "
                "config. The reply includes the premium units the call consumed. "
                "'(no reply)' means the delegate did not answer before the timeout."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "delegate_id": {
                        "type": "string",
                        "description": "Delegate id returned by create_delegate.",
                    },
                    "message": {
                        "type": "string",
                        "description": "The sub-task or message for the delegate.",
                    },
                    "timeout_seconds": {
                        "type": "number",
                        "description": "How long to wait for the reply. Default 60.",
                    },
                },
                "required": ["delegate_id", "message"],
            },
            handler=tools.send_to_delegate,
            category="delegation",
            # The delegate call enforces its own timeout.
            timeout=3600.0,
        )
    )
    registry.register(
        ToolDefinition(
            name="list_delegates",
            description="List every stored delegate with its description, model and whether it is active.",
            input_schema={"type": "object", "properties": {}},
            handler=tools.list_delegates,
            category="delegation",
        )
    )
    registry.register(
        ToolDefinition(
            name="find_delegates",
            description=(
                "Find stored delegates whose description contains any of the words "
                "in the query (case-insensitive, literal substring match, unranked)."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "description": {
                        "type": "string",
                        "description": "Words describing the delegate you are looking for.",
                    },
                },
                "required": ["description"],
            },
            handler=tools.find_delegates,
            category="delegation",
        )
    )
    registry.register(
        ToolDefinition(
            name="destroy_delegate",
            description=(
                "Release a delegate's live session to free resources. Its config is "
                "kept, so send_to_delegate can bring it back later."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "delegate_id": {"type": "string", "description": "Delegate id."},
                },
                "required": ["delegate_id"],
            },
            handler=tools.destroy_delegate,
            category="delegation",
        )
    )
