# run.py
# Entry point. Config and wiring only: no logic lives here.
#
# Set OPENROUTER_API_KEY to let a language model make recovery decisions;
# without it a rule-based policy is used.

import asyncio

from plan_runtime import display
from plan_runtime.config import Settings
from plan_runtime.executor import PlanExecutor
from plan_runtime.log import configure_logging
from plan_runtime.models import Alternative, Plan, Skip
from plan_runtime.recovery import LanguageModelRecoveryPolicy, RecoveryPolicy, RuleBasedRecoveryPolicy
from plan_runtime.registry import ToolRegistry
from plan_runtime.tools import register_builtin_tools

# Sample plans: one clean run, one exercising recovery and optional steps.
PLANS = [
    {
        "goal": "Research a topic and keep notes.",
        "steps": [
            {
                "id": 1,
                "tool": "search_and_summarize",
                "parameters": {"query": "transformer attention mechanisms", "max_chars": 600},
                "description": "Search and condense the findings",
                "error_handling": "Fall back to echoing the query if search is unavailable.",
            },
            {
                "id": 2,
                "tool": "file_write",
                "parameters": {"path": "notes/attention.txt", "content": "Attention notes placeholder."},
                "description": "Save notes to the workspace",
            },
        ],
    },
    {
        "goal": "Demonstrate recovery.",
        "steps": [
            {
                "id": "a",
                "tool": "summarize",
                "parameters": {"text": ""},
                "description": "Summarize nothing (fails)",
                "error_handling": "Skip if there is nothing to summarize.",
            },
            {
                "id": "b",
                "tool": "http_post",
                "parameters": {"url": "http://127.0.0.1:9/unreachable", "payload": {}},
                "description": "Post to an unreachable endpoint (optional)",
                "optional": True,
            },
            {
                "id": "c",
                "tool": "file_write",
                "parameters": {"path": "../outside.txt", "content": "blocked"},
                "description": "Write outside the workspace (critical, halts the plan)",
            },
            {
                "id": "d",
                "tool": "echo",
                "parameters": {"message": "never reached"},
                "description": "Unreachable step",
            },
        ],
    },
]


def build_policy(settings: Settings) -> RecoveryPolicy:
    if settings.llm_api_key:
        return LanguageModelRecoveryPolicy(settings=settings)
    return RuleBasedRecoveryPolicy(
        {
            "search_and_summarize": Alternative(tool="echo", params={"message": "search unavailable"}),
            "summarize": Skip(reason="nothing to summarize"),
        }
    )


async def run_plans(settings: Settings) -> None:
    registry = ToolRegistry()
    register_builtin_tools(registry, workspace=settings.workspace)

    policy = build_policy(settings)
    executor = PlanExecutor(registry, recovery_policy=policy, history_size=settings.history_size)
    await executor.initialize()
    display.banner(registry.get_registered_tools(), type(policy).__name__)

    for raw in PLANS:
        plan = Plan.model_validate(raw)
        display.plan_received(plan)
        display.execution_start(len(plan.steps))
        async for event in executor.stream(plan):
            if event.kind == "step":
                display.step_finished(event.step)
            else:
                display.execution_summary(event.execution)

    display.metrics(registry.get_metrics())


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level, json_output=settings.log_format == "json")
    asyncio.run(run_plans(settings))


if __name__ == "__main__":
    main()
