"""Tool registry for mid-generation function calling.

Three tools the model can call while generating. Each returns a JSON-able
dict. Tool names on the wire are camelCase to match what the browser
client renders. execute_tool contains every failure into an error-shaped
result so one bad call never aborts the surrounding generation.
"""

import datetime as dt
from types import MappingProxyType
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field

from backend.agent.calculator import CalculationError, evaluate, sanitize
from backend.core.errors import ToolExecutionError

logger = structlog.get_logger(__name__)

DEFAULT_SEARCH_LIMIT = 5


class CurrentTimeArgs(BaseModel):
    timezone: str = Field(default="UTC", description="Timezone, e.g., Asia/Shanghai")


class CalculateArgs(BaseModel):
    expression: str = Field(..., description="Mathematical expression to evaluate")


class WebSearchArgs(BaseModel):
    query: str = Field(..., description="Search query")
    limit: int = Field(default=DEFAULT_SEARCH_LIMIT, description="Maximum number of results")


def _resolve_zone(name: str) -> dt.tzinfo:
    """ZoneInfo for ``name``, or UTC when the zone is unknown or malformed."""
    if name.upper() == "UTC":
        return dt.timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("tool.unknown_timezone", timezone=name)
        return dt.timezone.utc


def _format_locale_time(moment: dt.datetime) -> str:
    """en-US style "M/D/YYYY, h:mm:ss AM" rendering."""
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return f"{moment.month}/{moment.day}/{moment.year}, {hour}:{moment:%M:%S} {meridiem}"


@tool("getCurrentTime", args_schema=CurrentTimeArgs)
def get_current_time(timezone: str = "UTC") -> dict:
    """Get the current date and time"""
    now = dt.datetime.now(dt.timezone.utc)
    local = now.astimezone(_resolve_zone(timezone or "UTC"))
    return {
        "time": _format_locale_time(local),
        "timezone": timezone,
        "timestamp": now.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
    }


@tool("calculate", args_schema=CalculateArgs)
def calculate(expression: str) -> dict:
    """Perform mathematical calculations"""
    try:
        return {"expression": expression, "result": evaluate(sanitize(expression))}
    except CalculationError as e:
        logger.debug("tool.calculate.invalid", reason=str(e))
        return {"expression": expression, "error": "Invalid expression"}


@tool("webSearch", args_schema=WebSearchArgs)
def web_search(query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> dict:
    """Search the web for information"""
    # No search backend is wired up; the response shape is the contract.
    return {
        "query": query,
        "message": "Web search is a placeholder. Integrate with a real search API.",
        "results": [],
    }


TOOLS: Mapping[str, BaseTool] = MappingProxyType({
    t.name: t for t in (get_current_time, calculate, web_search)
})


def get_tools() -> tuple[BaseTool, ...]:
    """All registered tools, in registration order."""
    return tuple(TOOLS.values())


async def execute_tool(name: str, arguments: dict[str, Any]) -> tuple[dict, bool]:
    """Run one tool call and contain any failure.

    Args:
        name: Wire name of the tool the model asked for.
        arguments: Arguments as emitted by the model.

    Returns:
        (result, is_error). On failure the result is {"error": message}.
    """
    try:
        return await _run_tool(name, arguments), False
    except ToolExecutionError as e:
        logger.warning("tool.failed", tool=name, error=e.message)
        return {"error": e.message}, True


async def _run_tool(name: str, arguments: dict[str, Any]) -> dict:
    selected = TOOLS.get(name)
    if selected is None:
        raise ToolExecutionError(name, f"Unknown tool: {name}")

    try:
        result = await selected.ainvoke(arguments or {})
    except Exception as e:
        raise ToolExecutionError(name, str(e)) from e

    if not isinstance(result, dict):
        raise ToolExecutionError(name, "tool returned malformed output")
    return result
