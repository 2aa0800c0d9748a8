"""Command-line LLM provider for research-based discovery.

Wraps any non-interactive LLM CLI that takes the prompt as its last argument
and prints the answer on stdout, e.g. ``opencode run`` or ``claude -p``.

Note: This provider is configured for vanilla LLM behavior:
- Runs with stdin closed and a neutral working directory
- Uses the CLI's own authentication and model configuration
- Structured output is requested in the prompt and parsed from the reply
"""

import asyncio
import json
import os
import subprocess
import tempfile
from collections.abc import Sequence
from typing import Any

from loguru import logger

from varietymcp.interfaces.llm_provider import LLMProvider, LLMResponse
from varietymcp.utils.json_extraction import extract_json_from_response


class CLIResearchProvider(LLMProvider):
    """LLM provider running a configured command per prompt."""

    def __init__(
        self,
        command: Sequence[str],
        model: str = "default",
        timeout: int = 60,
        max_retries: int = 2,
    ):
        """Initialize CLI provider.

        Args:
            command: argv prefix; the prompt is appended as the last argument
            model: Label reported in responses (the CLI picks the real model)
            timeout: Request timeout in seconds
            max_retries: Number of attempts for failed commands
        """
        if not command:
            raise ValueError("CLI research provider needs a non-empty command")
        self._command = list(command)
        self._model = model
        self._timeout = timeout
        self._max_retries = max(1, max_retries)

        self._requests_made = 0
        self._estimated_tokens_used = 0

    @property
    def name(self) -> str:
        return f"cli:{os.path.basename(self._command[0])}"

    @property
    def model(self) -> str:
        return self._model

    async def _run_cli_command(
        self, prompt: str, system: str | None = None, timeout: int | None = None
    ) -> str:
        """Run the CLI and return its stdout.

        Raises:
            RuntimeError: If the command fails or times out on every attempt
        """
        cmd = [*self._command, f"{system}\n{prompt}" if system else prompt]
        request_timeout = timeout if timeout is not None else self._timeout

        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            process = None
            try:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    env=os.environ,
                    cwd=tempfile.gettempdir(),
                )
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(), timeout=request_timeout
                )

                if process.returncode != 0:
                    error_msg = stderr.decode("utf-8", errors="replace") if stderr else "Unknown error"
                    last_error = RuntimeError(
                        f"{self._command[0]} failed (exit {process.returncode}): {error_msg}"
                    )
                    if attempt < self._max_retries - 1:
                        logger.warning(
                            f"Research CLI attempt {attempt + 1} failed, retrying: {error_msg}"
                        )
                        continue
                    raise last_error

                return stdout.decode("utf-8", errors="replace").strip()

            except asyncio.TimeoutError as e:
                if process and process.returncode is None:
                    process.kill()
                    await process.wait()
                last_error = RuntimeError(
                    f"{self._command[0]} timed out after {request_timeout}s"
                )
                if attempt < self._max_retries - 1:
                    logger.warning(f"Research CLI attempt {attempt + 1} timed out, retrying")
                    continue
                raise last_error from e

            except FileNotFoundError as e:
                raise RuntimeError(f"Research CLI not found: {self._command[0]}") from e

        raise last_error or RuntimeError("Research CLI failed after retries")

    async def complete(
        self,
        prompt: str,
        system: str | None = None,
        max_completion_tokens: int = 4096,
        timeout: int | None = None,
    ) -> LLMResponse:
        content = await self._run_cli_command(prompt, system, timeout)
        if not content:
            raise RuntimeError(f"{self._command[0]} returned an empty response")

        self._requests_made += 1
        tokens = self.estimate_tokens(prompt) + self.estimate_tokens(content)
        self._estimated_tokens_used += tokens
        return LLMResponse(
            content=content, tokens_used=tokens, model=self._model, finish_reason="stop"
        )

    async def complete_structured(
        self,
        prompt: str,
        json_schema: dict[str, Any],
        system: str | None = None,
        max_completion_tokens: int = 4096,
        timeout: int | None = None,
    ) -> dict[str, Any]:
        """Request JSON output by embedding the schema in the prompt.

        Raises:
            RuntimeError: If the reply is not a JSON object with the
                schema's required fields
        """
        structured_prompt = f"""Please respond with ONLY valid JSON that conforms
to this schema:

{json.dumps(json_schema, indent=2)}

User request: {prompt}

Respond with JSON only, no additional text."""

        response = await self.complete(
            structured_prompt, system, max_completion_tokens, timeout
        )
        try:
            parsed = json.loads(extract_json_from_response(response.content))
        except json.JSONDecodeError as e:
            logger.debug(f"Raw research output: {response.content[:500]}")
            raise RuntimeError(f"Invalid JSON in structured output: {e}") from e

        if not isinstance(parsed, dict):
            raise RuntimeError(f"Expected JSON object, got {type(parsed).__name__}")

        missing = [f for f in json_schema.get("required", []) if f not in parsed]
        if missing:
            raise RuntimeError(f"Missing required fields: {missing}")
        return parsed

    def get_usage_stats(self) -> dict[str, Any]:
        return {
            "requests_made": self._requests_made,
            "estimated_tokens_used": self._estimated_tokens_used,
        }
