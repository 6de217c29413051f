# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Tests for output module."""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from io import StringIO
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from ger.exceptions import InvalidInputError
from ger.output import (
    OutputFormat,
    log_and_print,
    make_table,
    render,
    render_error,
    resolve_format,
    to_json,
    to_xml,
)


def _console() -> Console:
    return Console(file=StringIO(), markup=False, width=200)


class TestResolveFormat:
    """Tests for resolve_format."""

    def test_flags(self):
        """Each flag selects its format; none keeps the default."""
        assert resolve_format(json_flag=True) is OutputFormat.JSON
        assert resolve_format(xml_flag=True) is OutputFormat.XML
        assert resolve_format() is OutputFormat.PLAIN
        assert resolve_format(default=OutputFormat.XML) is OutputFormat.XML

    def test_command_flag_overrides_default(self):
        """A per-command flag wins over the global format."""
        assert resolve_format(json_flag=True, default=OutputFormat.XML) is OutputFormat.JSON

    def test_both_flags(self):
        """--json and --xml cannot be combined."""
        with pytest.raises(InvalidInputError, match="mutually exclusive"):
            resolve_format(json_flag=True, xml_flag=True)


class TestToXml:
    """Tests for XML serialization."""

    def test_declaration_and_nesting(self):
        """Documents carry a declaration and nested elements."""
        text = to_xml({"status": "success", "count": 1, "change": {"number": 5}}, "result")

        assert text.startswith('<?xml version="1.0" encoding="UTF-8"?>\n<result>')
        root = ET.fromstring(text.split("\n", 1)[1])
        assert root.findtext("status") == "success"
        assert root.findtext("change/number") == "5"

    def test_list_items_singular(self):
        """List items are named after the singular of their parent."""
        text = to_xml({"changes": [{"number": 1}, {"number": 2}], "properties": ["a"], "data": ["x"]}, "r")
        root = ET.fromstring(text.split("\n", 1)[1])

        assert [e.findtext("number") for e in root.findall("changes/change")] == ["1", "2"]
        assert root.findtext("properties/property") == "a"
        assert root.findtext("data/item") == "x"

    def test_none_and_bools(self):
        """None values are omitted and booleans lower-cased."""
        root = ET.fromstring(to_xml({"topic": None, "connected": False}, "r").split("\n", 1)[1])

        assert root.find("topic") is None
        assert root.findtext("connected") == "false"

    def test_special_characters_escaped(self):
        """Text is escaped and invalid tag names sanitized."""
        text = to_xml({"message": "a < b & c", "2fa": "on", "a b": "x"}, "r")
        root = ET.fromstring(text.split("\n", 1)[1])

        assert root.findtext("message") == "a < b & c"
        assert root.findtext("_2fa") == "on"
        assert root.findtext("a_b") == "x"


class TestRender:
    """Tests for render and render_error."""

    def test_json(self):
        """JSON output is indented."""
        console = _console()
        render(console, {"a": [1, 2]}, OutputFormat.JSON, "r")

        assert json.loads(console.file.getvalue()) == {"a": [1, 2]}

    def test_plain_callback(self):
        """Plain output is delegated to the callback."""
        console = _console()
        render(console, {"a": 1}, OutputFormat.PLAIN, "r", lambda out: out.print("hello [bold]"))

        assert console.file.getvalue() == "hello [bold]\n"

    def test_plain_without_callback(self):
        """Without a callback plain output falls back to JSON."""
        console = _console()
        render(console, {"a": 1}, OutputFormat.PLAIN, "r")

        assert console.file.getvalue().strip() == to_json({"a": 1})

    def test_error_json_on_stdout(self):
        """Structured errors go to stdout."""
        console, err = _console(), _console()
        render_error(console, err, "boom", OutputFormat.JSON)

        assert json.loads(console.file.getvalue()) == {"status": "error", "error": "boom"}
        assert err.file.getvalue() == ""

    def test_error_plain_on_stderr(self):
        """Plain errors go to stderr with an Error prefix."""
        console, err = _console(), _console()
        render_error(console, err, "boom", OutputFormat.PLAIN)

        assert err.file.getvalue() == "Error: boom\n"
        assert console.file.getvalue() == ""

    def test_error_xml(self):
        """XML errors use the given root element."""
        console, err = _console(), _console()
        render_error(console, err, "boom", OutputFormat.XML, "vote_result")

        assert "<vote_result>" in console.file.getvalue()
        assert "<error>boom</error>" in console.file.getvalue()

    def test_make_table(self):
        """Tables render None cells as blanks."""
        console = _console()
        console.print(make_table("Groups", ["Name", "ID"], [("devs", None)]))

        output = console.file.getvalue()
        assert "Groups" in output
        assert "devs" in output


class TestLogAndPrint:
    """log_and_print sends one message to both the log and the console."""

    def test_log_and_print_info_level(self):
        """INFO messages are logged and printed."""
        logger = logging.getLogger("test_logger")
        console = MagicMock(spec=Console)

        with patch("builtins.print") as mock_print:
            log_and_print(logger, console, "Test message", level="info")

        mock_print.assert_called_once_with("Test message")
        console.print.assert_not_called()

    def test_log_and_print_with_style(self):
        """The Rich style is passed to the console."""
        logger = logging.getLogger("test_logger")
        console = MagicMock(spec=Console)

        with patch("builtins.print") as mock_print:
            log_and_print(logger, console, "Styled message", style="bold red", level="info")

        console.print.assert_called_once_with("Styled message", style="bold red")
        mock_print.assert_not_called()

    def test_log_and_print_warning_level(self):
        """WARNING messages go to logger.warning."""
        logger = logging.getLogger("test_logger_warning")
        console = MagicMock(spec=Console)

        with patch("builtins.print"):
            with patch.object(logger, "warning") as mock_warning:
                log_and_print(logger, console, "Warning message", level="warning")

        mock_warning.assert_called_once_with("Warning message")

    def test_log_and_print_invalid_level(self):
        """Test that an unknown level falls back to INFO."""
        logger = logging.getLogger("test_logger_invalid")
        console = MagicMock(spec=Console)

        with patch("builtins.print"):
            with patch.object(logger, "info") as mock_info:
                log_and_print(logger, console, "Message", level="verbose")

        mock_info.assert_called_once_with("Message")
