"""
Built-in Tools for agent nodes.

Importing this module registers the tools in the global registry.
"""

from typing import Any, Dict, Literal, Optional
from datetime import datetime, timedelta
from urllib.parse import quote
import asyncio
import math
import re

from pydantic import BaseModel, Field

from nodeflow.engine.safe_eval import safe_eval
from nodeflow.engine.sandbox import compile_snippet
from nodeflow.tools.registry import register_tool


# ============================================================
# Calculator
# ============================================================

class CalculatorParams(BaseModel):
    expression: str = Field(..., description='Arithmetic expression, e.g. "2 + 3 * 4"')


@register_tool(
    "calculator",
    name="Calculator",
    description="Evaluate arithmetic: + - * / // % ** and parentheses",
    parameters=CalculatorParams,
    category="math",
)
def calculator(expression: str) -> Dict[str, Any]:
    if not expression.strip():
        raise ValueError("Empty expression")

    result = safe_eval(expression, allow_functions=False)
    if isinstance(result, bool) or not isinstance(result, (int, float)) or not math.isfinite(result):
        raise ValueError(f"Expression did not produce a finite number: {result!r}")

    return {
        "result": result,
        "expression": expression,
        "formatted": f"{expression} = {result}",
    }


# ============================================================
# Web search (mock)
# ============================================================

class WebSearchParams(BaseModel):
    query: str = Field(..., description="Search keywords")
    limit: int = Field(5, ge=1, description="Maximum number of results")


@register_tool(
    "web-search",
    name="Web Search",
    description="Search the web (returns canned results, no network access)",
    parameters=WebSearchParams,
    category="search",
)
async def web_search(query: str, limit: int = 5) -> Dict[str, Any]:
    encoded = quote(query)
    results = [
        {
            "title": f"Search result for \"{query}\"",
            "url": f"https://example.com/search?q={encoded}",
            "snippet": f"Summary of information about {query}...",
        },
        {
            "title": f"{query} - overview",
            "url": f"https://wiki.example.com/{encoded}",
            "snippet": f"A detailed introduction to {query}...",
        },
        {
            "title": f"How to use {query}",
            "url": f"https://tutorial.example.com/{encoded}",
            "snippet": f"Tutorial: learn how to use {query}...",
        },
    ][:limit]

    return {
        "query": query,
        "results": results,
        "total_found": len(results),
    }


# ============================================================
# Code executor
# ============================================================

class CodeExecutorParams(BaseModel):
    code: str = Field(..., description="Python function body; use return to produce a value")
    timeout: float = Field(5.0, gt=0, description="Seconds before execution is abandoned")


@register_tool(
    "code-executor",
    name="Code Executor",
    description="Run a short, sandboxed Python snippet and return its result",
    parameters=CodeExecutorParams,
    category="development",
)
async def code_executor(code: str, timeout: float = 5.0) -> Dict[str, Any]:
    snippet = compile_snippet(code, filename="<code-executor>")
    loop = asyncio.get_running_loop()
    try:
        result = await asyncio.wait_for(loop.run_in_executor(None, snippet, {}), timeout)
    except asyncio.TimeoutError:
        raise TimeoutError(f"Code execution exceeded {timeout}s")

    return {
        "code": code,
        "result": result,
        "type": type(result).__name__,
    }


# ============================================================
# Text processor
# ============================================================

class TextProcessorParams(BaseModel):
    text: str = Field(..., description="Text to process")
    operation: Literal["count", "uppercase", "lowercase", "reverse", "summary"]


@register_tool(
    "text-processor",
    name="Text Processor",
    description="Count, change case, reverse or summarise text",
    parameters=TextProcessorParams,
    category="text",
)
def text_processor(text: str, operation: str) -> Dict[str, Any]:
    if operation == "count":
        result: Any = {
            "characters": len(text),
            "characters_no_spaces": len(re.sub(r"\s", "", text)),
            "words": len(text.split()),
            "lines": len(text.split("\n")),
            "paragraphs": len([p for p in re.split(r"\n\s*\n", text) if p.strip()]),
        }
    elif operation == "uppercase":
        result = text.upper()
    elif operation == "lowercase":
        result = text.lower()
    elif operation == "reverse":
        result = text[::-1]
    else:
        sentences = [s.strip() for s in re.split(r"[.!?]+", text) if s.strip()]
        first = sentences[0] if sentences else ""
        result = {
            "summary": first[:100] + "..." if len(first) > 100 else first,
            "total_sentences": len(sentences),
            "avg_words_per_sentence": round(len(text.split()) / len(sentences)) if sentences else 0,
        }

    return {"operation": operation, "result": result}


# ============================================================
# Time tool
# ============================================================

TIME_UNITS = {
    "seconds": timedelta(seconds=1),
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
}


class TimeToolParams(BaseModel):
    operation: Literal["current", "format", "add", "diff"]
    format: Optional[str] = Field(None, description="strftime format for 'format'")
    amount: Optional[float] = Field(None, description="Amount to add for 'add'")
    unit: Optional[Literal["seconds", "minutes", "hours", "days"]] = None
    target_time: Optional[str] = Field(None, description="ISO timestamp for 'diff'")


@register_tool(
    "time-tool",
    name="Time",
    description="Current time, formatting, time arithmetic and differences",
    parameters=TimeToolParams,
    category="utility",
)
def time_tool(
    operation: str,
    format: Optional[str] = None,
    amount: Optional[float] = None,
    unit: Optional[str] = None,
    target_time: Optional[str] = None,
) -> Dict[str, Any]:
    now = datetime.now().astimezone()

    if operation == "current":
        result: Any = {
            "timestamp": int(now.timestamp() * 1000),
            "iso": now.isoformat(),
            "timezone": now.tzname(),
        }
    elif operation == "format":
        fmt = format or "%Y-%m-%d %H:%M:%S"
        result = now.strftime(fmt)
    elif operation == "add":
        delta = TIME_UNITS[unit or "minutes"] * (amount or 0)
        result = {
            "original": now.isoformat(),
            "added": f"{amount or 0} {unit or 'minutes'}",
            "result": (now + delta).isoformat(),
        }
    else:
        if not target_time:
            raise ValueError("target_time is required for 'diff'")
        target = datetime.fromisoformat(target_time)
        if target.tzinfo is None:
            target = target.astimezone()
        diff = abs(target - now)
        hours, remainder = divmod(diff.seconds, 3600)
        result = {
            "from": now.isoformat(),
            "to": target.isoformat(),
            "difference": {
                "total_ms": int(diff.total_seconds() * 1000),
                "days": diff.days,
                "hours": hours,
                "minutes": remainder // 60,
                "formatted": f"{diff.days}d {hours}h {remainder // 60}m",
            },
        }

    return {"operation": operation, "result": result}
