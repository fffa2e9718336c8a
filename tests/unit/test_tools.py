"""Unit tests for the tool registry."""

import asyncio
import re

import pytest

from backend.agent.tools import TOOLS, calculate, execute_tool, get_current_time, get_tools, web_search

TIME_FORMAT = re.compile(r"^\d{1,2}/\d{1,2}/\d{4}, \d{1,2}:\d{2}:\d{2} (AM|PM)$")
TIMESTAMP_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


class TestRegistry:

    def test_wire_names(self):
        assert list(TOOLS) == ["getCurrentTime", "calculate", "webSearch"]

    def test_get_tools_ordered(self):
        assert [t.name for t in get_tools()] == list(TOOLS)

    def test_registry_read_only(self):
        with pytest.raises(TypeError):
            TOOLS["calculate"] = web_search

    def test_tools_have_descriptions(self):
        for t in get_tools():
            assert t.description


class TestGetCurrentTime:

    def test_default_utc(self):
        result = get_current_time.invoke({})
        assert result["timezone"] == "UTC"
        assert TIME_FORMAT.match(result["time"])
        assert TIMESTAMP_FORMAT.match(result["timestamp"])

    def test_named_zone(self):
        result = get_current_time.invoke({"timezone": "Asia/Shanghai"})
        assert result["timezone"] == "Asia/Shanghai"
        assert TIME_FORMAT.match(result["time"])

    @pytest.mark.parametrize("zone", ["Not/AZone", "../../etc/passwd", ""])
    def test_invalid_zone_never_fails(self, zone):
        result = get_current_time.invoke({"timezone": zone})
        assert TIME_FORMAT.match(result["time"])
        assert result["timezone"] == zone


class TestCalculate:

    def test_simple(self):
        assert calculate.invoke({"expression": "2 + 2"}) == {"expression": "2 + 2", "result": 4}

    def test_injection_stripped(self):
        result = calculate.invoke({"expression": "DROP TABLE users; 1+1"})
        assert result == {"expression": "DROP TABLE users; 1+1", "result": 2}

    def test_unbalanced(self):
        assert calculate.invoke({"expression": "(1+2"}) == {"expression": "(1+2", "error": "Invalid expression"}

    def test_division_by_zero(self):
        assert calculate.invoke({"expression": "1/0"})["error"] == "Invalid expression"

    def test_nothing_left_after_sanitize(self):
        assert calculate.invoke({"expression": "hello"})["error"] == "Invalid expression"


class TestWebSearch:

    def test_placeholder_shape(self):
        result = web_search.invoke({"query": "python"})
        assert result["query"] == "python"
        assert result["results"] == []
        assert "placeholder" in result["message"]


class TestExecuteTool:

    def test_success(self):
        result, is_error = asyncio.run(execute_tool("calculate", {"expression": "6*7"}))
        assert is_error is False
        assert result["result"] == 42

    def test_unknown_tool_contained(self):
        result, is_error = asyncio.run(execute_tool("launchRockets", {}))
        assert is_error is True
        assert "Unknown tool" in result["error"]

    def test_bad_arguments_contained(self):
        result, is_error = asyncio.run(execute_tool("calculate", {"expr": "1+1"}))
        assert is_error is True
        assert "error" in result

    def test_raising_tool_contained(self, mocker):
        mocker.patch.object(type(TOOLS["webSearch"]), "ainvoke", side_effect=RuntimeError("boom"))
        result, is_error = asyncio.run(execute_tool("webSearch", {"query": "x"}))
        assert is_error is True
        assert result == {"error": "boom"}
