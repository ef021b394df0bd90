"""Shell command execution for clone/install/build steps.

Commands run in their own process group so a timeout or a cancellation
can take down the whole tree (npm spawns plenty of grandchildren).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import codecs
from dataclasses import dataclass
import os
from pathlib import Path
import signal

import structlog

from shared.logging import scrub_url_credentials

from .errors import CommandFailed, CommandTimeout, DeploymentCancelled

logger = structlog.get_logger(__name__)

# Called with ("stdout" | "stderr", decoded chunk)
OutputObserver = Callable[[str, str], None]
Redactor = Callable[[str], str]

READ_CHUNK_SIZE = 4096
MAX_PENDING_CHARS = 64 * 1024
KILL_GRACE_SECONDS = 5.0


@dataclass
class CommandResult:
    """Buffered output of a successful command."""

    stdout: str
    stderr: str


class CommandRunner:
    """Runs shell commands inside a working directory with an env overlay."""

    def __init__(self, default_timeout: float = 600.0, npm_cache_dir: str = "/tmp/npm_cache"):  # noqa: S108
        self.default_timeout = default_timeout
        self.npm_cache_dir = npm_cache_dir

    def build_env(self, cwd: Path, overlay: dict[str, str] | None = None) -> dict[str, str]:
        """Ambient environment with ``overlay`` on top (overlay wins)."""
        env = {**os.environ, **(overlay or {})}
        node_bin = str(Path(cwd) / "node_modules" / ".bin")
        env["PATH"] = f"{node_bin}{os.pathsep}{env.get('PATH', '')}"
        env.setdefault("npm_config_cache", self.npm_cache_dir)
        return env

    async def execute(
        self,
        command: str,
        cwd: Path | str,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        on_output: OutputObserver | None = None,
        cancel_event: asyncio.Event | None = None,
        redact: Redactor | None = None,
    ) -> CommandResult:
        """Run ``command`` through the shell and wait for it.

        Raises:
            CommandFailed: non-zero exit status
            CommandTimeout: still running after ``timeout`` seconds
            DeploymentCancelled: ``cancel_event`` was set while running
        """
        timeout = timeout or self.default_timeout
        cwd = Path(cwd)

        def clean(text: str) -> str:
            text = scrub_url_credentials(text)
            return redact(text) if redact else text

        safe_command = clean(command)
        logger.info("command_started", command=safe_command, cwd=str(cwd))

        if cancel_event is not None and cancel_event.is_set():
            raise DeploymentCancelled(f"Cancelled before running: {safe_command}")

        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            env=self.build_env(cwd, env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )

        stdout_chunks: list[str] = []
        stderr_chunks: list[str] = []

        async def pump(stream: asyncio.StreamReader, name: str, sink: list[str]) -> None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            # Redaction runs on whole lines so a secret split across reads is still caught
            pending = ""
            while True:
                data = await stream.read(READ_CHUNK_SIZE)
                pending += decoder.decode(data, final=not data)
                if data:
                    cut = pending.rfind("\n") + 1
                    if not cut:
                        if len(pending) < MAX_PENDING_CHARS:
                            continue
                        cut = len(pending)
                    text, pending = pending[:cut], pending[cut:]
                else:
                    text, pending = pending, ""
                if text:
                    text = clean(text)
                    sink.append(text)
                    if on_output is not None:
                        on_output(name, text)
                if not data:
                    break

        completion = asyncio.ensure_future(
            asyncio.gather(
                pump(proc.stdout, "stdout", stdout_chunks),
                pump(proc.stderr, "stderr", stderr_chunks),
                proc.wait(),
            )
        )
        waiters: set[asyncio.Future] = {completion}
        cancel_waiter: asyncio.Future | None = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._terminate(proc)
            completion.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if completion not in done:
            await self._terminate(proc)
            try:
                await asyncio.wait_for(completion, timeout=KILL_GRACE_SECONDS)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                completion.cancel()
            stdout, stderr = "".join(stdout_chunks), "".join(stderr_chunks)
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("command_cancelled", command=safe_command, pid=proc.pid)
                raise DeploymentCancelled(f"Cancelled while running: {safe_command}")
            logger.error("command_timeout", command=safe_command, timeout=timeout)
            raise CommandTimeout(safe_command, timeout, stdout, stderr)

        completion.result()
        stdout, stderr = "".join(stdout_chunks), "".join(stderr_chunks)

        if proc.returncode != 0:
            logger.error(
                "command_failed",
                command=safe_command,
                exit_code=proc.returncode,
                stderr=stderr[-2000:] or None,
            )
            raise CommandFailed(safe_command, proc.returncode, stdout, stderr)

        logger.info("command_succeeded", command=safe_command)
        return CommandResult(stdout=stdout, stderr=stderr)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM the process group, then SIGKILL if it lingers."""
        if proc.returncode is not None:
            return
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("process_force_kill", pid=proc.pid)
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                return
            await proc.wait()
