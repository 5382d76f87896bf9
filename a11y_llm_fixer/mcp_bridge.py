"""Bridge to the Node-based accessibility tool server (``a11y-mcp-server``).

The server is a long-lived child process speaking newline-delimited JSON-RPC 2.0
on stdio (the MCP stdio transport). ``A11yServer`` owns that process for the
length of one run; use it as a context manager so it is shut down on every
exit path.
"""
from __future__ import annotations

import logging
import os
import select
import subprocess
import time
from typing import Any, Dict, List, Optional

import orjson

from . import __version__

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = ["npx", "-y", "a11y-mcp-server"]
PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "a11y-llm-fixer", "version": __version__}


class BridgeError(ConnectionError):
    """The tool server could not be reached or returned an unusable reply."""


class A11yServer:
    def __init__(
        self,
        command: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        request_timeout_s: float = 60.0,
        shutdown_timeout_s: float = 5.0,
    ):
        self.command = list(command or DEFAULT_COMMAND)
        self.env = env
        self.request_timeout_s = request_timeout_s
        self.shutdown_timeout_s = shutdown_timeout_s
        self.server_info: Dict[str, Any] = {}
        self._proc: Optional[subprocess.Popen] = None
        self._buffer = b""
        self._next_id = 1

    @property
    def connected(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def __enter__(self) -> "A11yServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> None:
        logger.info("Starting accessibility server: %s", " ".join(self.command))
        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=None,
                env=self.env if self.env is not None else os.environ.copy(),
            )
        except OSError as e:
            raise BridgeError(f"Failed to start accessibility server: {e}") from e
        try:
            result = self.request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": CLIENT_INFO,
                },
            )
            self.server_info = result.get("serverInfo", {}) if isinstance(result, dict) else {}
            self._send({"jsonrpc": "2.0", "method": "notifications/initialized"})
        except BridgeError:
            self.close()
            raise
        logger.info("Accessibility server connected: %s", self.server_info.get("name", "unknown"))

    def list_tools(self) -> List[str]:
        result = self.request("tools/list", {})
        return [t.get("name", "") for t in result.get("tools", []) if isinstance(t, dict)]

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Call a server tool and return the raw MCP ``result`` object."""
        result = self.request("tools/call", {"name": name, "arguments": arguments})
        if not isinstance(result, dict):
            raise BridgeError(f"Malformed tools/call result for {name}")
        return result

    def request(self, method: str, params: Dict[str, Any]) -> Any:
        req_id = self._next_id
        self._next_id += 1
        self._send({"jsonrpc": "2.0", "id": req_id, "method": method, "params": params})
        deadline = time.monotonic() + self.request_timeout_s
        while True:
            msg = self._read_message(deadline)
            if "method" in msg:
                if "id" in msg:
                    self._answer_server_request(msg)
                else:
                    logger.debug("Skipping server notification: %s", msg["method"])
                continue
            if msg.get("id") != req_id:
                logger.debug("Skipping stale reply: %s", msg.get("id"))
                continue
            if "error" in msg:
                err = msg["error"] if isinstance(msg["error"], dict) else {"message": str(msg["error"])}
                raise BridgeError(f"{method} failed: {err.get('message', 'unknown error')}")
            return msg.get("result", {})

    def close(self) -> None:
        proc = self._proc
        if proc is None:
            return
        self._proc = None
        try:
            if proc.stdin and not proc.stdin.closed:
                proc.stdin.close()
            proc.wait(timeout=self.shutdown_timeout_s)
        except subprocess.TimeoutExpired:
            proc.terminate()
            try:
                proc.wait(timeout=self.shutdown_timeout_s)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
        except OSError as e:
            logger.warning("Error while stopping accessibility server: %s", e)
            proc.kill()
            proc.wait()
        finally:
            if proc.stdout:
                proc.stdout.close()
        logger.info("Disconnected from accessibility server")

    def _answer_server_request(self, msg: Dict[str, Any]) -> None:
        """Reply to a request the server sent us; only ``ping`` is supported."""
        method = msg["method"]
        if method == "ping":
            reply: Dict[str, Any] = {"jsonrpc": "2.0", "id": msg["id"], "result": {}}
        else:
            logger.debug("Rejecting unsupported server request: %s", method)
            reply = {
                "jsonrpc": "2.0",
                "id": msg["id"],
                "error": {"code": -32601, "message": "Method not found"},
            }
        self._send(reply)

    def _send(self, message: Dict[str, Any]) -> None:
        if not self.connected:
            raise BridgeError("Accessibility server is not running")
        try:
            self._proc.stdin.write(orjson.dumps(message) + b"\n")
            self._proc.stdin.flush()
        except (BrokenPipeError, OSError) as e:
            raise BridgeError(f"Failed writing to accessibility server: {e}") from e

    def _read_message(self, deadline: float) -> Dict[str, Any]:
        while True:
            line = self._read_line(deadline)
            if not line.strip():
                continue
            try:
                msg = orjson.loads(line)
            except orjson.JSONDecodeError:
                # Servers sometimes print banners on stdout
                logger.debug("Ignoring non-JSON server output: %r", line[:200])
                continue
            if isinstance(msg, dict):
                return msg

    def _read_line(self, deadline: float) -> bytes:
        if self._proc is None or self._proc.stdout is None:
            raise BridgeError("Accessibility server is not running")
        fd = self._proc.stdout.fileno()
        while b"\n" not in self._buffer:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise BridgeError(f"Timed out after {self.request_timeout_s}s waiting for accessibility server")
            ready, _, _ = select.select([fd], [], [], remaining)
            if not ready:
                continue
            chunk = os.read(fd, 65536)
            if not chunk:
                code = self._proc.poll()
                raise BridgeError(f"Accessibility server exited (code {code})")
            self._buffer += chunk
        line, _, self._buffer = self._buffer.partition(b"\n")
        return line
