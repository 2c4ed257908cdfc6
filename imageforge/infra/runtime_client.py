# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# RUNTIME PROCESS CLIENT - SESSION PROTOCOL TRANSPORT
# -----------------------------------------------------------------------------
# Responsibility: Launch the language runtime as a subprocess and exchange
# JSON-lines requests/replies with it over stdin/stdout.
#
# This is part of the Infrastructure layer - it knows about pipes, threads
# and JSON framing, and nothing about packages or images. The Session Host
# builds on top of it.
#
# Protocol: one JSON object per line in each direction. Every reply carries
# "ok"; failed replies carry "error" and "kind". Stdout lines that are not
# JSON objects (stray prints from user code) are skipped.
# -----------------------------------------------------------------------------

import json
import queue
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Sequence

from rich.console import Console
from rich.markup import escape

console = Console()

# Lines of runtime stderr kept for error reports
STDERR_TAIL_LINES = 40


class RuntimeProcessError(Exception):
    """Raised when the runtime cannot be started or stops answering."""

    def __init__(self, message: str, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class RuntimeRequestError(Exception):
    """Raised when the runtime answers a request with ok=false."""

    def __init__(self, message: str, kind: str = "error", reply: dict | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.reply = reply or {}


class RuntimeProcess:
    """
    A runtime subprocess speaking the session protocol.

    stdout and stderr are drained by daemon threads; replies arrive through
    a queue, with None marking end of stream.
    """

    def __init__(
        self,
        command: Sequence[str],
        image: Path | None = None,
        image_flag: str = "--image",
        extra_args: Sequence[str] = (),
        env: dict | None = None,
    ) -> None:
        """
        Args:
            command: Runtime command line (executable first).
            image: Image the runtime should start from, if any.
            image_flag: Runtime flag that selects the start-up image.
            extra_args: Additional runtime arguments.
            env: Environment for the subprocess (default: inherit).
        """
        self.argv = [*command]
        if image is not None:
            self.argv += [image_flag, str(image)]
        self.argv += [*extra_args]
        self._env = env
        self._proc: subprocess.Popen | None = None
        self._replies: "queue.Queue[dict | None]" = queue.Queue()
        self._stderr: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._lock = threading.Lock()
        self._readers: list[threading.Thread] = []

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    def is_alive(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def stderr_tail(self) -> str:
        return "\n".join(self._stderr)

    def start(self) -> dict:
        """
        Spawn the runtime and perform the hello handshake.

        Returns:
            The hello reply (runtime name, version, preloaded packages).

        Raises:
            RuntimeProcessError: If the executable is missing or never answers.
        """
        try:
            self._proc = subprocess.Popen(
                self.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
                env=self._env,
            )
        except OSError as e:
            raise RuntimeProcessError(f"Cannot launch runtime {self.argv[0]!r}: {e}")

        self._readers = [
            threading.Thread(target=self._read_stdout, daemon=True),
            threading.Thread(target=self._read_stderr, daemon=True),
        ]
        for reader in self._readers:
            reader.start()
        return self.request("hello")

    def _read_stdout(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        for line in self._proc.stdout:
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                message = None
            if isinstance(message, dict):
                self._replies.put(message)
            else:
                console.print(f"[dim][RUNTIME] {escape(line)}[/dim]", highlight=False)
        self._replies.put(None)

    def _read_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        for line in self._proc.stderr:
            self._stderr.append(line.rstrip("\n"))

    def request(self, op: str, timeout: float | None = None, **payload) -> dict:
        """
        Send one request and wait for its reply.

        Args:
            op: Protocol operation name.
            timeout: Seconds to wait for the reply (None waits until the
                runtime answers or exits).
            **payload: Request fields.

        Returns:
            The reply object.

        Raises:
            RuntimeProcessError: Runtime exited, the pipe broke, or timeout.
            RuntimeRequestError: The runtime answered ok=false.
        """
        if self._proc is None:
            raise RuntimeProcessError("Runtime not started")

        with self._lock:
            try:
                self._proc.stdin.write(json.dumps({"op": op, **payload}) + "\n")
                self._proc.stdin.flush()
            except (BrokenPipeError, ValueError, OSError) as e:
                raise RuntimeProcessError(f"Runtime pipe closed during '{op}': {e}", self.stderr_tail())

            try:
                reply = self._replies.get(timeout=timeout)
            except queue.Empty:
                raise RuntimeProcessError(f"Runtime did not answer '{op}' within {timeout}s", self.stderr_tail())

        if reply is None:
            # EOF sentinel; keep it queued for any later request
            self._replies.put(None)
            code = self._proc.poll()
            raise RuntimeProcessError(
                f"Runtime exited during '{op}' (exit code: {code})", self.stderr_tail()
            )

        if not reply.get("ok", False):
            raise RuntimeRequestError(
                str(reply.get("error", "unknown runtime error")),
                kind=str(reply.get("kind", "error")),
                reply=reply,
            )
        return reply

    def kill(self) -> None:
        """Kill the runtime immediately."""
        if self.is_alive():
            self._proc.kill()

    def close(self, grace_seconds: float = 10) -> int | None:
        """
        Ask the runtime to exit, killing it after `grace_seconds`.

        Returns:
            The process exit code, or None if it was never started.
        """
        if self._proc is None:
            return None

        if self.is_alive():
            try:
                self._proc.stdin.write(json.dumps({"op": "exit"}) + "\n")
                self._proc.stdin.flush()
            except (BrokenPipeError, ValueError, OSError):
                pass
            try:
                self._proc.wait(timeout=grace_seconds)
            except subprocess.TimeoutExpired:
                console.print("[yellow][RUNTIME] Runtime ignored exit request, killing[/yellow]")
                self._proc.kill()
                self._proc.wait()

        for reader in self._readers:
            reader.join(timeout=2)

        for stream in (self._proc.stdin, self._proc.stdout, self._proc.stderr):
            try:
                stream.close()
            except (OSError, ValueError):
                pass
        return self._proc.returncode
