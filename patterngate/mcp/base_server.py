#!/usr/bin/env python3
# CUI // SP-CTI
"""Base MCP (Model Context Protocol) server implementing JSON-RPC 2.0 over stdio.

Uses Content-Length framing (LSP-style):
    Content-Length: N\r\n\r\n{json_payload}

Reads requests from stdin, dispatches to registered tool handlers and writes
responses to stdout. Notifications (no "id") receive no response. Logging
must go to stderr so it never interleaves with the transport.
"""

import json
import logging
import sys
import traceback
from typing import Any, BinaryIO, Callable, Dict, Optional

logger = logging.getLogger("patterngate.mcp.base")

PROTOCOL_VERSION = "2024-11-05"


class MCPServer:
    """JSON-RPC 2.0 dispatch over Content-Length framed streams."""

    # Standard JSON-RPC error codes
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    def __init__(self, name: str = "patterngate", version: str = "1.0.0",
                 stdin: Optional[BinaryIO] = None, stdout: Optional[BinaryIO] = None):
        self.name = name
        self.version = version
        self._stdin = stdin
        self._stdout = stdout
        # name -> {description, input_schema, handler}
        self._tools: Dict[str, dict] = {}
        self._initialized = False

    @property
    def tool_names(self):
        return list(self._tools)

    def register_tool(
        self,
        name: str,
        description: str,
        input_schema: dict,
        handler: Callable[[dict], Any],
    ) -> None:
        """Register a tool that clients can invoke via tools/call.

        Args:
            name: Unique tool name (e.g. "discover_patterns").
            description: Human-readable description of the tool.
            input_schema: JSON Schema object describing the tool's arguments.
            handler: Callable that receives the arguments dict and returns a result.
        """
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = {
            "description": description,
            "input_schema": input_schema,
            "handler": handler,
        }
        logger.debug("Registered tool: %s", name)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _in(self) -> BinaryIO:
        return self._stdin or sys.stdin.buffer

    def _out(self) -> BinaryIO:
        return self._stdout or sys.stdout.buffer

    def _read_message(self) -> Optional[dict]:
        """Read one framed message. Returns None on EOF.

        A bare JSON line without a Content-Length header is also accepted.
        Undecodable bodies are returned as {} so the loop can answer with an
        error instead of stopping.
        """
        stream = self._in()
        content_length = None
        while True:
            line = stream.readline()
            if not line:
                return None
            line_str = line.decode("utf-8", errors="replace").strip()
            if line_str == "":
                if content_length is not None:
                    break
                continue
            if line_str.lower().startswith("content-length:"):
                try:
                    content_length = int(line_str.split(":", 1)[1].strip())
                except ValueError:
                    logger.warning("Invalid Content-Length header: %s", line_str)
                    return {}
            elif line_str.startswith("{"):
                try:
                    return json.loads(line_str)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON line: %s", line_str[:200])
                    return {}

        body = stream.read(content_length)
        if not body:
            return None
        try:
            return json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error("JSON decode error: %s", exc)
            return {}

    def _write_message(self, obj: dict) -> None:
        body_bytes = json.dumps(obj, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")
        out = self._out()
        out.write(f"Content-Length: {len(body_bytes)}\r\n\r\n".encode("utf-8"))
        out.write(body_bytes)
        out.flush()

    # ------------------------------------------------------------------
    # JSON-RPC helpers
    # ------------------------------------------------------------------

    def _make_response(self, request_id: Any, result: Any) -> dict:
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    def _make_error(self, request_id: Any, code: int, message: str, data: Any = None) -> dict:
        err: Dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            err["data"] = data
        return {"jsonrpc": "2.0", "id": request_id, "error": err}

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle_message(self, msg: Any) -> Optional[dict]:
        """Dispatch one decoded message and return the response, or None for notifications."""
        if not isinstance(msg, dict) or "method" not in msg:
            request_id = msg.get("id") if isinstance(msg, dict) else None
            return self._make_error(request_id, self.INVALID_REQUEST, "Missing 'method' field")

        method = msg.get("method", "")
        params = msg.get("params") or {}
        request_id = msg.get("id")
        is_notification = "id" not in msg
        logger.debug("Dispatch: method=%s, id=%s", method, request_id)

        try:
            result = self._handle_method(method, params)
        except _MethodNotFound as exc:
            return None if is_notification else self._make_error(
                request_id, self.METHOD_NOT_FOUND, str(exc))
        except Exception as exc:
            logger.error("Error handling %s: %s\n%s", method, exc, traceback.format_exc())
            return None if is_notification else self._make_error(
                request_id, self.INTERNAL_ERROR, str(exc))

        if is_notification:
            return None
        return self._make_response(request_id, result)

    def _handle_method(self, method: str, params: dict) -> Any:
        if method == "initialize":
            return self._handle_initialize(params)
        if method == "notifications/initialized":
            self._initialized = True
            return None
        if method == "tools/list":
            return self._handle_tools_list(params)
        if method == "tools/call":
            return self._handle_tools_call(params)
        if method == "ping":
            return {}
        raise _MethodNotFound(f"Unknown method: {method}")

    def _handle_initialize(self, params: dict) -> dict:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}} if self._tools else {},
            "serverInfo": {"name": self.name, "version": self.version},
        }

    def _handle_tools_list(self, params: dict) -> dict:
        return {
            "tools": [
                {"name": name, "description": info["description"], "inputSchema": info["input_schema"]}
                for name, info in self._tools.items()
            ]
        }

    def _handle_tools_call(self, params: dict) -> dict:
        """Run a tool handler. Handler exceptions become isError results."""
        tool_name = params.get("name", "")
        arguments = params.get("arguments") or {}

        if tool_name not in self._tools:
            raise _MethodNotFound(f"Unknown tool: {tool_name}")

        handler = self._tools[tool_name]["handler"]
        try:
            result = handler(arguments)
        except Exception as exc:
            logger.error("Tool %s raised: %s", tool_name, exc)
            return {
                "content": [{
                    "type": "text",
                    "text": json.dumps({"error": str(exc), "tool": tool_name}, indent=2),
                }],
                "isError": True,
            }

        is_error = isinstance(result, dict) and "error" in result
        text = result if isinstance(result, str) else json.dumps(result, indent=2, default=str)
        return {"content": [{"type": "text", "text": text}], "isError": is_error}

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Read and dispatch messages until EOF or a keyboard interrupt."""
        logger.info("MCP server '%s' v%s starting (protocol %s)", self.name, self.version, PROTOCOL_VERSION)
        try:
            while True:
                msg = self._read_message()
                if msg is None:
                    logger.info("EOF on stdin, shutting down.")
                    break
                response = self.handle_message(msg)
                if response is not None:
                    self._write_message(response)
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down.")


class _MethodNotFound(Exception):
    """Raised when a JSON-RPC method is not found."""
