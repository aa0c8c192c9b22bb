# recovery.py
# Recovery policies: decide what to do when a plan step fails.
#
# The executor only sees RecoveryPolicy.decide() and the closed set of
# outcomes in models.py. Prompting and response parsing for the language
# model policy stay in this module.

import inspect
import json
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Union

import structlog
from openai import AsyncOpenAI

from plan_runtime.config import Settings
from plan_runtime.errors import RecoveryParseError
from plan_runtime.models import (
    Abort,
    Alternative,
    RecoveryOutcome,
    Retry,
    Skip,
    Step,
    StepId,
    Unresolved,
)

logger = structlog.get_logger()

RecoveryRule = Union[
    RecoveryOutcome,
    Callable[[Step, Exception], Union[RecoveryOutcome, Awaitable[RecoveryOutcome]]],
]


class RecoveryPolicy(ABC):
    """Pluggable decision-maker consulted when a step fails."""

    @abstractmethod
    async def decide(self, step: Step, error: Exception) -> RecoveryOutcome:
        """Return Retry, Alternative, Skip, Abort or Unresolved for `step`."""


# ---------------------------------------------------------------------------
# Rule-based policy
# ---------------------------------------------------------------------------


class RuleBasedRecoveryPolicy(RecoveryPolicy):
    """
    Deterministic policy driven by a lookup table.

    Rules are keyed by step id or tool name; a step id match wins. A rule is
    either an outcome or a callable (step, error) -> outcome, sync or async.
    """

    def __init__(
        self,
        rules: Mapping[StepId, RecoveryRule] | None = None,
        default: RecoveryOutcome | None = None,
    ) -> None:
        self._rules = dict(rules or {})
        self._default = default if default is not None else Unresolved()

    async def decide(self, step: Step, error: Exception) -> RecoveryOutcome:
        rule: RecoveryRule = self._default
        for key in (step.id, step.tool):
            if key in self._rules:
                rule = self._rules[key]
                break

        if callable(rule):
            outcome = rule(step, error)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return outcome
        return rule


# ---------------------------------------------------------------------------
# Language model policy
# ---------------------------------------------------------------------------

RECOVERY_SYSTEM_PROMPT = """\
You are the error-recovery component of a plan execution engine. A step of \
an execution plan has failed and you must decide how the engine proceeds.

Choose exactly one action:
  retry:       run the same tool again with modified parameters
  alternative: run a different tool that achieves a similar result
  skip:        give up on this step and continue with the rest of the plan
  abort:       the failure is fatal to the whole plan

Respond with ONLY a JSON object in this format:
{
  "action": "retry|alternative|skip|abort",
  "details": {
    "params": {"<name>": "<value>"},
    "tool": "<tool name>",
    "parameters": {"<name>": "<value>"},
    "reason": "<short explanation>"
  }
}

Use "params" for retry, "tool" and "parameters" for alternative, and \
"reason" for skip or abort. Omit the keys the chosen action does not use.\
"""

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n(.*?)\n?\s*```", re.DOTALL)


def _format_failure(step: Step, error: Exception) -> str:
    """Render a failed step and its error as the user turn of the prompt."""
    return (
        f"Step:\n{step.model_dump_json(indent=2)}\n\n"
        f"Error: {error}\n\n"
        f"Error handling strategy: {step.error_handling or 'No specific strategy provided.'}"
    )


def _extract_json_object(text: str) -> dict[str, Any]:
    """
    Pull the decision object out of free-form model output.
    The first fenced block holding a JSON object wins; otherwise the first
    decodable top-level {...}.
    """
    for fenced in _FENCED_JSON.finditer(text):
        try:
            data = json.loads(fenced.group(1), strict=False)
        except json.JSONDecodeError:
            logger.debug("recovery_fence_not_json", block=fenced.group(1)[:80])
            continue
        if isinstance(data, dict):
            return data

    decoder = json.JSONDecoder(strict=False)
    for match in re.finditer(r"\{", text):
        try:
            data, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    raise RecoveryParseError(f"No JSON object found in response:\n{text}")


def parse_recovery_response(text: str) -> RecoveryOutcome:
    """
    Turn model output into a recovery outcome.
    Raises RecoveryParseError on any parse or shape failure.
    """
    data = _extract_json_object(text)
    action = data.get("action")
    details = data.get("details") or {}
    if not isinstance(details, dict):
        raise RecoveryParseError("'details' must be an object.")

    if action == "retry":
        params = details.get("params", details)
        if not isinstance(params, dict):
            raise RecoveryParseError("Retry 'params' must be an object.")
        return Retry(params=params)

    if action == "alternative":
        tool = details.get("tool")
        params = details.get("parameters", details.get("params")) or {}
        if not isinstance(tool, str) or not tool:
            raise RecoveryParseError("Alternative action requires a 'tool' name.")
        if not isinstance(params, dict):
            raise RecoveryParseError("Alternative 'parameters' must be an object.")
        return Alternative(tool=tool, params=params)

    if action == "skip":
        return Skip(reason=str(details.get("reason", "")))

    if action == "abort":
        return Abort(reason=str(details.get("reason", "")))

    raise RecoveryParseError(f"Unknown recovery action: {action!r}")


class LanguageModelRecoveryPolicy(RecoveryPolicy):
    """
    Asks a chat model how to recover, through any OpenAI-compatible endpoint.

    Example:
        policy = LanguageModelRecoveryPolicy(model="anthropic/claude-3.5-haiku")
        executor = PlanExecutor(registry, recovery_policy=policy)

    Unparseable replies become Unresolved; API errors propagate to the
    executor, which records the step as error_handling_failed.
    """

    def __init__(
        self,
        model: str | None = None,
        client: AsyncOpenAI | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or Settings.from_env()
        self._model = model or settings.recovery_model
        self._temperature = settings.recovery_temperature if temperature is None else temperature
        self._max_tokens = max_tokens or settings.recovery_max_tokens
        self._client = client or AsyncOpenAI(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
        )

    async def _call_model(self, messages: list[dict]) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        return (response.choices[0].message.content or "").strip()

    async def decide(self, step: Step, error: Exception) -> RecoveryOutcome:
        messages = [
            {"role": "system", "content": RECOVERY_SYSTEM_PROMPT},
            {"role": "user", "content": _format_failure(step, error)},
        ]
        response = await self._call_model(messages)

        try:
            outcome = parse_recovery_response(response)
        except RecoveryParseError as exc:
            logger.warning("recovery_response_unparseable", step_id=step.id, error=str(exc))
            return Unresolved(raw_response=response)

        logger.info("recovery_decided", step_id=step.id, action=outcome.action, model=self._model)
        return outcome
