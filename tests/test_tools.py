import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from plan_runtime.errors import ToolExecutionError
from plan_runtime.registry import ToolRegistry
from plan_runtime.tools import (
    _tool_http_post,
    _tool_search,
    _tool_summarize,
    make_file_write,
    register_builtin_tools,
)

# ---------------------------------------------------------------------------
# Search Tests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@patch("ddgs.DDGS")
async def test_tool_search_success(mock_ddgs_cls):
    mock_instance = mock_ddgs_cls.return_value
    mock_instance.text.return_value = [
        {"title": "Result 1", "body": "Body 1", "href": "http://1.com"}
    ]

    result = await _tool_search({"query": "test"})
    assert "Result 1" in result
    assert "Body 1" in result
    assert "http://1.com" in result
    mock_instance.text.assert_called_once_with("test", max_results=4)


@pytest.mark.asyncio
@patch("ddgs.DDGS")
async def test_tool_search_empty_query(mock_ddgs_cls):
    with pytest.raises(ValueError, match="no query provided"):
        await _tool_search({"query": "   "})
    mock_ddgs_cls.assert_not_called()


@pytest.mark.asyncio
@patch("ddgs.DDGS")
async def test_tool_search_no_results(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.return_value = []
    assert await _tool_search({"query": "ghost"}) == "No results found."


@pytest.mark.asyncio
@patch("ddgs.DDGS")
async def test_tool_search_exception_is_recorded_by_registry(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.side_effect = Exception("Network timeout")
    registry = ToolRegistry()
    register_builtin_tools(registry)

    with pytest.raises(ToolExecutionError, match="Network timeout"):
        await registry.execute("search", {"query": "crash"})
    assert registry.get_tool_metrics("search").error_count == 1


# ---------------------------------------------------------------------------
# Summarize Tests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_tool_summarize_truncation():
    assert len(await _tool_summarize({"text": "a" * 5000})) == 4000
    assert await _tool_summarize({"text": "abcdef", "max_chars": 3}) == "abc"


@pytest.mark.asyncio
async def test_tool_summarize_requires_text():
    with pytest.raises(ValueError):
        await _tool_summarize({"text": "  "})


# ---------------------------------------------------------------------------
# Workspace Sandboxing Tests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_file_write_inside_workspace(tmp_path):
    write = make_file_write(tmp_path / "workspace")
    result = await write({"path": "notes/safe.txt", "content": "ok"})
    assert "Wrote 2 bytes" in result
    assert (tmp_path / "workspace" / "notes" / "safe.txt").read_text(encoding="utf-8") == "ok"


@pytest.mark.asyncio
async def test_file_write_blocks_path_traversal(tmp_path):
    write = make_file_write(tmp_path / "workspace")
    with pytest.raises(PermissionError, match="escapes the workspace"):
        await write({"path": "../outside.txt", "content": "hack"})
    assert not (tmp_path / "outside.txt").exists()


@pytest.mark.asyncio
async def test_file_write_blocks_absolute_paths(tmp_path):
    write = make_file_write(tmp_path / "workspace")
    with pytest.raises(PermissionError):
        await write({"path": str(tmp_path / "elsewhere.txt"), "content": "hack"})


# ---------------------------------------------------------------------------
# HTTP Tests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@patch("plan_runtime.tools.httpx.AsyncClient")
async def test_http_post_reports_status(mock_client_cls):
    response = MagicMock(status_code=201, content=b"{}")
    client = mock_client_cls.return_value.__aenter__.return_value
    client.post = AsyncMock(return_value=response)

    result = await _tool_http_post({"url": "http://example.test/hook", "payload": {"a": 1}})

    assert "201" in result
    client.post.assert_awaited_once_with("http://example.test/hook", json={"a": 1})
    response.raise_for_status.assert_called_once()


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

def test_register_builtin_tools(tmp_path):
    registry = ToolRegistry()
    register_builtin_tools(registry, workspace=tmp_path)
    assert set(registry.get_registered_tools()) == {
        "echo",
        "search",
        "summarize",
        "file_write",
        "http_post",
        "search_and_summarize",
    }
    assert registry.get_tool_schema("search").required == ["query"]


@pytest.mark.asyncio
@patch("ddgs.DDGS")
async def test_search_and_summarize_composition(mock_ddgs_cls, tmp_path):
    mock_ddgs_cls.return_value.text.return_value = [
        {"title": "T", "body": "B" * 200, "href": "http://x"}
    ]
    registry = ToolRegistry()
    register_builtin_tools(registry, workspace=tmp_path)

    result = await registry.execute("search_and_summarize", {"query": "q", "max_chars": 10})
    assert result == "[T]\nBBBBBB"
