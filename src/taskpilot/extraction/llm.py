"""Language-model completion clients used for parameter extraction."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_RETRIES = 2
_TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class CompletionError(RuntimeError):
    """Completion call failed, with a retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class CompletionClient(Protocol):
    """External language-model extraction call."""

    def complete(self, prompt: str, *, temperature: float, max_output_tokens: int) -> str:
        """Return the raw model text for ``prompt``."""
        raise NotImplementedError


class HttpCompletionClient:
    """OpenAI-compatible ``/chat/completions`` client over httpx."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def complete(self, prompt: str, *, temperature: float, max_output_tokens: int) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_output_tokens,
        }
        try:
            response = self._client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as error:
            raise CompletionError("Completion request timed out", transient=True) from error
        except httpx.HTTPError as error:
            raise CompletionError(f"Completion request failed: {error}", transient=True) from error

        if not response.is_success:
            raise CompletionError(
                f"Completion endpoint returned HTTP {response.status_code}",
                transient=response.status_code in _TRANSIENT_STATUS_CODES,
            )
        try:
            body = response.json()
            return str(body["choices"][0]["message"]["content"] or "")
        except (ValueError, KeyError, IndexError, TypeError) as error:
            raise CompletionError(
                "Completion endpoint returned an unexpected payload",
                transient=False,
            ) from error

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpCompletionClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class CliCompletionClient:
    """Run a local CLI agent per prompt; its stdout is the completion text.

    The command template must contain ``{prompt}`` and may contain
    ``{model}``; both are shell-quoted before splitting into argv.
    """

    def __init__(
        self,
        *,
        command_template: str,
        model: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        stripped = command_template.strip()
        if not stripped:
            raise CompletionError("CLI completion command template is empty.", transient=False)
        if "{prompt}" not in stripped:
            raise CompletionError(
                "CLI completion command template must include {prompt}.",
                transient=False,
            )
        self.command_template = stripped
        self.model = model
        self.timeout_seconds = timeout_seconds

    def complete(self, prompt: str, *, temperature: float, max_output_tokens: int) -> str:
        argv = self._build_argv(prompt)
        env = os.environ.copy()
        env["TASKPILOT_LLM_TEMPERATURE"] = str(temperature)
        env["TASKPILOT_LLM_MAX_OUTPUT_TOKENS"] = str(max_output_tokens)
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as error:
            raise CompletionError(
                f"CLI completion command not found: {argv[0]}",
                transient=False,
            ) from error
        except subprocess.TimeoutExpired as error:
            raise CompletionError("CLI completion command timed out", transient=True) from error
        except OSError as error:
            raise CompletionError(
                f"CLI completion command failed to start: {error}",
                transient=True,
            ) from error

        if completed.returncode != 0:
            logger.warning(
                "CLI completion exited with code %d (stderr %d chars)",
                completed.returncode,
                len(completed.stderr or ""),
            )
            raise CompletionError(
                f"CLI completion command exited with code {completed.returncode}",
                transient=False,
            )
        return completed.stdout

    def _build_argv(self, prompt: str) -> list[str]:
        try:
            rendered = self.command_template.format(
                model=shlex.quote(self.model),
                prompt=shlex.quote(prompt),
            )
        except KeyError as error:
            raise CompletionError(
                f"Unsupported command template placeholder: {error}",
                transient=False,
            ) from error
        argv = shlex.split(rendered)
        if not argv:
            raise CompletionError(
                "CLI completion command template rendered empty command.",
                transient=False,
            )
        return argv
