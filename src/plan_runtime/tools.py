# tools.py
# Built-in tool implementations and their parameter schemas.
# Host applications register these through register_builtin_tools(); the
# executor never calls them directly, only through the ToolRegistry.
#
# Tools raise on failure so the registry records the error and the
# executor can apply its recovery policy.

import asyncio
import os
from pathlib import Path
from typing import Any

import httpx

from plan_runtime.registry import CompositionStep, ToolRegistry

SUMMARY_LIMIT = 4000


async def _tool_echo(args: dict) -> str:
    return str(args.get("message", ""))


def _search_sync(query: str, max_results: int) -> list[dict]:
    from ddgs import DDGS
    # Coerce the generator to a list to ensure actual execution
    return list(DDGS().text(query, max_results=max_results))


async def _tool_search(args: dict) -> str:
    query = args.get("query", "").strip()
    if not query:
        raise ValueError("no query provided")

    results = await asyncio.to_thread(_search_sync, query, int(args.get("max_results", 4)))
    if not results:
        return "No results found."

    lines = []
    for r in results:
        lines.append(f"[{r.get('title', 'No Title')}]\n{r.get('body', '')}\nSource: {r.get('href', '')}")
    return "\n\n".join(lines)


async def _tool_summarize(args: dict) -> str:
    text = args.get("text", "").strip()
    if not text:
        raise ValueError("no text provided")
    limit = int(args.get("max_chars", SUMMARY_LIMIT))
    return text[:limit] if len(text) > limit else text


def make_file_write(workspace: str | os.PathLike) -> Any:
    """Build a file_write tool confined to `workspace`."""
    root = Path(workspace).resolve()

    async def _tool_file_write(args: dict) -> str:
        path = args.get("path", "").strip()
        content = args.get("content", "")
        if not path:
            raise ValueError("no path provided")

        target = (root / path).resolve()
        if not target.is_relative_to(root):
            raise PermissionError(f"path '{path}' escapes the workspace")

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return f"Wrote {len(content)} bytes to {target.relative_to(root)}."

    return _tool_file_write


async def _tool_http_post(args: dict) -> str:
    url = args.get("url", "").strip()
    payload = args.get("payload", {})
    if not url:
        raise ValueError("no URL provided")
    async with httpx.AsyncClient(timeout=10) as client:
        response = await client.post(url, json=payload)
    response.raise_for_status()
    return f"POST {url} → {response.status_code} ({len(response.content)} bytes)"


SCHEMAS: dict[str, dict[str, Any]] = {
    "echo": {
        "required": ["message"],
        "properties": {"message": {"type": "string"}},
    },
    "search": {
        "required": ["query"],
        "properties": {"query": {"type": "string"}, "max_results": {"type": "integer"}},
    },
    "summarize": {
        "required": ["text"],
        "properties": {"text": {"type": "string"}, "max_chars": {"type": "integer"}},
    },
    "file_write": {
        "required": ["path", "content"],
        "properties": {"path": {"type": "string"}, "content": {"type": "string"}},
    },
    "http_post": {
        "required": ["url"],
        "properties": {"url": {"type": "string"}, "payload": {"type": "object"}},
    },
}


def register_builtin_tools(registry: ToolRegistry, workspace: str | os.PathLike = "./workspace") -> None:
    """Register the built-in tools plus the composed search_and_summarize."""
    registry.register("echo", _tool_echo, SCHEMAS["echo"])
    registry.register("search", _tool_search, SCHEMAS["search"])
    registry.register("summarize", _tool_summarize, SCHEMAS["summarize"])
    registry.register("file_write", make_file_write(workspace), SCHEMAS["file_write"])
    registry.register("http_post", _tool_http_post, SCHEMAS["http_post"])

    registry.compose(
        "search_and_summarize",
        [
            CompositionStep(tool="search", parameter_map={"query": "params.query"}),
            CompositionStep(tool="summarize", parameter_map={"text": "result", "max_chars": "params.max_chars"}),
        ],
        {"required": ["query"], "properties": {"query": {"type": "string"}, "max_chars": {"type": "integer"}}},
    )
