"""Reasoning capability boundary.

The dispatch core only ever calls ``think(prompt, context)`` and treats the
return value as an opaque, JSON-serialisable payload. ``context`` always
carries the ``agent`` name.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Any, Protocol

from taskswarm.config import ReasonerSettings
from taskswarm.engine.quota import QuotaLedger, RequestPriority
from taskswarm.errors import AdmissionDenied, ConfigError, ExecutionFailed

logger = logging.getLogger(__name__)

# Maximum prompt length to prevent DoS via extremely long prompts
MAX_PROMPT_LENGTH = 50_000


class Reasoner(Protocol):
    async def think(self, prompt: str, context: dict[str, Any]) -> Any: ...


class EchoReasoner:
    """Offline reasoner for debug mode: answers without calling anything external."""

    async def think(self, prompt: str, context: dict[str, Any]) -> Any:
        first_line = prompt.strip().splitlines()[0] if prompt.strip() else ""
        return {
            "agent": context.get("agent"),
            "summary": first_line[:200],
            "prompt_chars": len(prompt),
            "debug": True,
        }


class CliReasoner:
    """Runs the Claude CLI in print mode as an asyncio subprocess."""

    MODEL_MAP = {
        "haiku": "claude-3-5-haiku-latest",
        "sonnet": "claude-sonnet-4-20250514",
        "opus": "claude-opus-4-6",
    }

    def __init__(self, settings: ReasonerSettings | None = None) -> None:
        self.settings = settings or ReasonerSettings()
        self._claude_bin: str | None = None

    def _resolve_claude_binary(self) -> str:
        """Resolve and validate the Claude binary path."""
        if self._claude_bin is None:
            resolved = Path(self.settings.cli_bin).expanduser().resolve()
            if not resolved.exists():
                raise ConfigError(f"Claude binary not found: {resolved}")
            if not os.access(str(resolved), os.X_OK):
                raise ConfigError(f"Claude binary not executable: {resolved}")
            self._claude_bin = str(resolved)
        return self._claude_bin

    @staticmethod
    def _validate_prompt(prompt: str) -> str:
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")
        if len(prompt) > MAX_PROMPT_LENGTH:
            raise ValueError(f"Prompt exceeds maximum length ({MAX_PROMPT_LENGTH} chars)")
        # Strip null bytes and non-printable control chars (keep newlines, tabs)
        return "".join(c for c in prompt if c == "\n" or c == "\t" or (ord(c) >= 32))

    async def think(self, prompt: str, context: dict[str, Any]) -> Any:
        agent = str(context.get("agent", "unknown"))
        task_id = str(context.get("task_id", ""))
        model = self.MODEL_MAP.get(self.settings.model, self.settings.model)

        cmd = [self._resolve_claude_binary(), "--model", model, "-p", self._validate_prompt(prompt)]
        system_prompt = context.get("system_prompt")
        if system_prompt:
            cmd += ["--append-system-prompt", str(system_prompt)]

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(Path.home()),
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.settings.timeout_seconds)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ExecutionFailed(task_id, agent, f"timed out after {self.settings.timeout_seconds}s") from None

        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"exit code {proc.returncode}"
            raise ExecutionFailed(task_id, agent, message[:500])
        return {"agent": agent, "output": stdout.decode(errors="replace")}


class QuotaGuardedReasoner:
    """Wraps a reasoner with quota admission, usage recording and latency feedback."""

    def __init__(self, inner: Reasoner, ledger: QuotaLedger) -> None:
        self.inner = inner
        self.ledger = ledger

    async def think(self, prompt: str, context: dict[str, Any]) -> Any:
        agent = str(context["agent"])
        priority = RequestPriority(context.get("quota_priority", RequestPriority.NORMAL))
        allowed, reason = await self.ledger.check(agent, priority)
        if not allowed:
            raise AdmissionDenied(agent, reason)
        await self.ledger.record_request(agent, priority)

        started = time.monotonic()
        try:
            return await self.inner.think(prompt, context)
        finally:
            elapsed_ms = (time.monotonic() - started) * 1000
            fraction = self.ledger.adjust_throttling(agent, elapsed_ms)
            logger.debug("%s responded in %.0fms, quota fraction now %.3f", agent, elapsed_ms, fraction)


def build_reasoner(settings: ReasonerSettings, debug_mode: bool = False) -> Reasoner:
    if debug_mode or settings.backend == "echo":
        return EchoReasoner()
    if settings.backend == "cli":
        return CliReasoner(settings)
    raise ConfigError(f"Unknown reasoner backend: {settings.backend}")
