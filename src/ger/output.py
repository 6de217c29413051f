# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Output rendering for ger commands.

Commands build plain Python data (dicts, lists, scalars) and hand it to
:func:`render`, which prints JSON, XML or a human readable form. Human
output goes through a rich ``Console`` created with ``markup=False`` so
that text coming from Gerrit is never interpreted as rich markup.
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterable, Mapping, Sequence
from enum import Enum
from typing import Any

from rich.console import Console
from rich.table import Table

from ger.exceptions import InvalidInputError

log = logging.getLogger("ger.output")

_LOG_LEVELS = ("debug", "info", "warning", "error")


class OutputFormat(str, Enum):
    PLAIN = "plain"
    JSON = "json"
    XML = "xml"


def resolve_format(
    json_flag: bool = False,
    xml_flag: bool = False,
    default: OutputFormat = OutputFormat.PLAIN,
) -> OutputFormat:
    """
    Turn a ``--json``/``--xml`` flag pair into a format.

    ``default`` is the format selected globally; a per-command flag
    overrides it.

    Raises:
        InvalidInputError: If both flags are set.
    """
    if json_flag and xml_flag:
        raise InvalidInputError("Options --json and --xml are mutually exclusive")
    if json_flag:
        return OutputFormat.JSON
    if xml_flag:
        return OutputFormat.XML
    return default


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def _item_tag(parent_tag: str) -> str:
    if parent_tag.endswith("ies"):
        return parent_tag[:-3] + "y"
    if parent_tag.endswith("s") and len(parent_tag) > 1:
        return parent_tag[:-1]
    return "item"


def _xml_tag(name: str) -> str:
    tag = "".join(c if c.isalnum() or c in "_-." else "_" for c in str(name))
    if not tag or not (tag[0].isalpha() or tag[0] == "_"):
        tag = f"_{tag}"
    return tag


def _append(parent: ET.Element, tag: str, value: Any) -> None:
    if value is None:
        return
    element = ET.SubElement(parent, _xml_tag(tag))
    _fill(element, value)


def _fill(element: ET.Element, value: Any) -> None:
    if isinstance(value, Mapping):
        for key, child in value.items():
            _append(element, str(key), child)
    elif isinstance(value, (list, tuple)):
        child_tag = _item_tag(element.tag)
        for child in value:
            _append(element, child_tag, child)
    elif isinstance(value, bool):
        element.text = "true" if value else "false"
    else:
        element.text = str(value)


def to_xml(data: Any, root: str) -> str:
    """
    Serialize nested data as an XML document with a declaration.

    Mapping keys become child elements; list items are named after the
    singular of their parent (``changes`` holds ``change`` elements).
    """
    element = ET.Element(_xml_tag(root))
    _fill(element, data)
    ET.indent(element)
    body = ET.tostring(element, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}'


def render(
    console: Console,
    data: Any,
    fmt: OutputFormat,
    root: str,
    plain: Callable[[Console], None] | None = None,
) -> None:
    """
    Print ``data`` in the selected format.

    Args:
        console: Console for standard output.
        data: JSON-compatible data.
        fmt: Selected output format.
        root: Root element name for XML output.
        plain: Callback printing the human form; defaults to pretty JSON.
    """
    if fmt is OutputFormat.JSON:
        console.print(to_json(data), soft_wrap=True)
    elif fmt is OutputFormat.XML:
        console.print(to_xml(data, root), soft_wrap=True)
    elif plain is not None:
        plain(console)
    else:
        console.print(to_json(data), soft_wrap=True)


def render_error(
    console: Console,
    err_console: Console,
    message: str,
    fmt: OutputFormat,
    root: str = "result",
) -> None:
    """Report an error: structured on stdout, or ``Error: ...`` on stderr."""
    if fmt is OutputFormat.JSON:
        console.print(to_json({"status": "error", "error": message}), soft_wrap=True)
    elif fmt is OutputFormat.XML:
        console.print(to_xml({"status": "error", "error": message}, root), soft_wrap=True)
    else:
        err_console.print(f"Error: {message}", soft_wrap=True)


def make_table(
    title: str | None,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
) -> Table:
    table = Table(title=title)
    for index, column in enumerate(columns):
        table.add_column(column, style="cyan" if index == 0 else "white")
    for row in rows:
        table.add_row(*("" if cell is None else str(cell) for cell in row))
    return table


def log_and_print(
    logger: logging.Logger,
    console: Console,
    message: str,
    style: str | None = None,
    level: str = "info",
) -> None:
    """
    Log a message and show it to the user.

    Unstyled messages go through ``print`` so they stay copy-paste
    friendly; styled ones through the rich console.
    """
    log_method = getattr(logger, level if level in _LOG_LEVELS else "info")
    log_method(message)
    if style is None:
        print(message)
    else:
        console.print(message, style=style)


__all__ = [
    "OutputFormat",
    "log_and_print",
    "make_table",
    "render",
    "render_error",
    "resolve_format",
    "to_json",
    "to_xml",
]
