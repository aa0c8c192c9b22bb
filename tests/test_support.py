import pytest
from unittest.mock import patch
from rich.console import Console

from plan_runtime import display
from plan_runtime.config import Settings
from plan_runtime.history import ExecutionHistory
from plan_runtime.models import ExecutionResult, Plan, RecoveryRecord, StepResult
from plan_runtime.registry import ToolRegistry

# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

def test_history_evicts_oldest():
    history = ExecutionHistory(capacity=2)
    first, second, third = (ExecutionResult(plan_id=f"p{n}") for n in range(3))
    for entry in (first, second, third):
        history.push(entry)

    assert len(history) == 2
    assert history.recent(5) == [third, second]
    assert history.recent(0) == []


def test_history_rejects_zero_capacity():
    with pytest.raises(ValueError):
        ExecutionHistory(capacity=0)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def test_settings_defaults(monkeypatch):
    for name in ("PLAN_RUNTIME_HISTORY_SIZE", "OPENROUTER_API_KEY", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.history_size == 100
    assert settings.llm_base_url == "https://openrouter.ai/api/v1"
    assert settings.llm_api_key is None
    assert settings.log_level == "INFO"


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("PLAN_RUNTIME_HISTORY_SIZE", "5")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    monkeypatch.setenv("PLAN_RUNTIME_RECOVERY_TEMPERATURE", "0.7")
    settings = Settings.from_env()
    assert settings.history_size == 5
    assert settings.llm_api_key == "sk-test"
    assert settings.recovery_temperature == 0.7


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

def test_display_renders_execution_and_metrics():
    console = Console(record=True, width=160)
    failed = StepResult(
        step_id="b",
        tool="fail",
        error="service unavailable",
        error_handling=RecoveryRecord(
            action="retry",
            attempt=StepResult(step_id="b_retry", tool="fail", success=True, result="ok"),
        ),
    )
    execution = ExecutionResult(
        plan_id="exec_1",
        steps=[StepResult(step_id="a", tool="echo", success=True, result="hi"), failed],
    )

    with patch.object(display, "console", console):
        display.plan_received(Plan.model_validate({"goal": "g", "steps": [{"id": "a", "tool": "echo"}]}))
        display.step_finished(failed)
        display.execution_summary(execution)
        display.metrics(ToolRegistry().get_metrics())

    output = console.export_text()
    assert "exec_1" in output
    assert "recovery retry" in output
    assert "b_retry via fail" in output
    assert "TOOL METRICS" in output
