"""Minimal async JSON-RPC 2.0 connection used by the native filesystem bridge."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

JsonDict = dict[str, Any]
Params = dict[str, Any] | list[Any] | None
MethodHandler = Callable[[Params], Awaitable[Any]]
Sender = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class JsonRpcFailure(Exception):
    code: int
    message: str
    data: Any | None = None

    def __str__(self) -> str:
        return f"JSON-RPC error {self.code}: {self.message}"


class JsonRpcConnection:
    def __init__(self, sender: Sender) -> None:
        self._sender = sender
        self._next_id = 1
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._methods: dict[str, MethodHandler] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def register_method(self, name: str, handler: MethodHandler) -> None:
        self._methods[name] = handler

    async def call(self, method: str, params: Params = None) -> Any:
        request_id = self._next_id
        self._next_id += 1

        payload: JsonDict = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
        }
        if params is not None:
            payload["params"] = params

        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = fut

        try:
            await self._sender(json.dumps(payload, separators=(",", ":")))
        except BaseException:
            self._pending.pop(request_id, None)
            raise
        return await fut

    async def feed(self, raw_line: str) -> None:
        if not raw_line.strip():
            return

        try:
            message = json.loads(raw_line)
        except json.JSONDecodeError:
            return
        if not isinstance(message, dict):
            return

        if "method" in message:
            await self._handle_request(message)
            return
        if "id" in message:
            self._handle_response(message)

    async def _handle_request(self, message: JsonDict) -> None:
        method = str(message.get("method", ""))
        params = message.get("params")
        request_id = message.get("id")

        handler = self._methods.get(method)
        if handler is None:
            if request_id is not None:
                await self._send_error(request_id, -32601, f"Method not found: {method}")
            return

        try:
            result = await handler(params)
        except JsonRpcFailure as exc:
            if request_id is not None:
                await self._send_error(request_id, exc.code, exc.message, exc.data)
            return
        except Exception as exc:  # noqa: BLE001
            if request_id is not None:
                await self._send_error(request_id, -32000, str(exc))
            return

        if request_id is not None:
            await self._sender(
                json.dumps(
                    {
                        "jsonrpc": "2.0",
                        "id": request_id,
                        "result": result,
                    },
                    separators=(",", ":"),
                )
            )

    def _handle_response(self, message: JsonDict) -> None:
        request_id = message.get("id")
        if not isinstance(request_id, int):
            return

        fut = self._pending.pop(request_id, None)
        if fut is None or fut.done():
            return

        if "error" in message:
            error = message["error"] or {}
            fut.set_exception(
                JsonRpcFailure(
                    code=int(error.get("code", -32000)),
                    message=str(error.get("message", "Unknown error")),
                    data=error.get("data"),
                )
            )
            return

        fut.set_result(message.get("result"))

    async def _send_error(self, request_id: int, code: int, message: str, data: Any | None = None) -> None:
        payload: JsonDict = {
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        }
        if data is not None:
            payload["error"]["data"] = data

        await self._sender(json.dumps(payload, separators=(",", ":")))

    def fail_pending(self, exc: BaseException) -> None:
        """Resolve every outstanding call with ``exc`` (peer went away)."""
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(exc)
        self._pending.clear()

    def shutdown(self) -> None:
        for fut in self._pending.values():
            if not fut.done():
                fut.cancel()
        self._pending.clear()
