# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, List, Optional

import click
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .build_status import BuildState, BuildWatchTimeout, WatchOptions, watch_build_state
from .commit_hook import CommitHookService
from .config import GerConfig, load_config, save_config
from .exceptions import EXIT_GENERIC, EXIT_INVALID_INPUT, ConfigError, GerError, InvalidInputError
from .gerrit.client import GerritRestError
from .gerrit.service import GerritService, create_gerrit_service
from .git import Git
from .identifiers import normalize_gerrit_host
from .operations import (
    abandon_change,
    add_reviewers,
    build_status,
    cast_vote,
    checkout_change,
    connection_status,
    create_workspace,
    extract_urls,
    group_by_project,
    install_commit_hook,
    list_comments,
    manage_topic,
    parse_vote_labels,
    post_comment,
    post_inline_comments,
    post_overall_review,
    project_rows,
    push_change,
    read_prompt,
    rebase_change,
    remove_reviewers,
    resolve_change,
    restore_change,
    run_review,
    search_changes,
    show_change,
    submit_change,
)
from .output import OutputFormat, log_and_print, make_table, render, render_error, resolve_format, to_json
from .push import PushOptions
from .review import select_strategy
from .worktree import GitWorktreeService

app = typer.Typer(
    help="Command-line client for Gerrit Code Review",
    no_args_is_help=True,
)
groups_app = typer.Typer(help="List and inspect Gerrit groups", no_args_is_help=True)
app.add_typer(groups_app, name="groups")

console = Console(markup=False)
err_console = Console(stderr=True, markup=False)
log = logging.getLogger("ger.cli")

_TRUTHY = ("1", "true", "yes")

JSON_OPTION = typer.Option(False, "--json", help="JSON output")
XML_OPTION = typer.Option(False, "--xml", help="XML output for LLM consumption")


def _configure_logging(verbose: bool) -> None:
    debug = verbose or os.environ.get("DEBUG", "").strip().lower() in _TRUTHY
    logger = logging.getLogger("ger")
    logger.handlers.clear()
    handler = RichHandler(console=err_console, show_path=False, markup=False)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"ger version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    json_output: bool = typer.Option(False, "--json", help="JSON output for all commands"),
    xml_output: bool = typer.Option(False, "--xml", help="XML output for all commands"),
):
    """Work with Gerrit changes from the command line."""
    _configure_logging(verbose)
    try:
        fmt = resolve_format(json_output, xml_output)
    except GerError as e:
        err_console.print(f"Error: {e}")
        raise typer.Exit(e.exit_code) from e
    ctx.obj = {"format": fmt}


def _format(ctx: typer.Context, json_flag: bool, xml_flag: bool) -> OutputFormat:
    default = (ctx.obj or {}).get("format", OutputFormat.PLAIN)
    try:
        return resolve_format(json_flag, xml_flag, default=default)
    except GerError as e:
        err_console.print(f"Error: {e}")
        raise typer.Exit(e.exit_code) from e


@contextmanager
def _errors(fmt: OutputFormat, root: str) -> Iterator[None]:
    """Render domain and REST errors in the selected format and exit."""
    try:
        yield
    except (GerError, GerritRestError) as e:
        log.debug("Command failed", exc_info=True)
        render_error(console, err_console, str(e), fmt, root)
        raise typer.Exit(e.exit_code) from e


def _service() -> GerritService:
    return create_gerrit_service(load_config())


def _print_text(text: str) -> None:
    console.print(text, soft_wrap=True, highlight=False)


# Setup and status


def _setup(host: Optional[str], username: Optional[str], password: Optional[str], ai_tool: Optional[str]) -> None:
    host = normalize_gerrit_host(host or typer.prompt("Gerrit host URL"))
    username = username or typer.prompt("Username")
    password = password or typer.prompt("HTTP password", hide_input=True)

    try:
        config = GerConfig(
            host=host,
            username=username,
            password=password,
            ai_tool=ai_tool or None,
            ai_auto_detect=not ai_tool,
        )
    except ValidationError as e:
        raise InvalidInputError(f"Invalid configuration: {e.errors()[0]['msg']}") from e
    log_and_print(log, console, f"Verifying credentials against {host}...", style="dim")
    if not create_gerrit_service(config).test_connection():
        raise ConfigError(
            "Authentication failed. Check your username and HTTP password "
            "(Gerrit: Settings > HTTP Credentials)"
        )
    path = save_config(config)
    log_and_print(log, console, f"✓ Configuration saved to {path}", style="green")


@app.command()
def setup(
    host: Optional[str] = typer.Option(None, "--host", help="Gerrit server URL"),
    username: Optional[str] = typer.Option(None, "--username", help="Gerrit username"),
    password: Optional[str] = typer.Option(None, "--password", help="Gerrit HTTP password"),
    ai_tool: Optional[str] = typer.Option(None, "--ai-tool", help="Preferred AI tool for reviews"),
):
    """Configure Gerrit credentials."""
    with _errors(OutputFormat.PLAIN, "setup_result"):
        _setup(host, username, password, ai_tool)


@app.command("init")
def init(
    host: Optional[str] = typer.Option(None, "--host", help="Gerrit server URL"),
    username: Optional[str] = typer.Option(None, "--username", help="Gerrit username"),
    password: Optional[str] = typer.Option(None, "--password", help="Gerrit HTTP password"),
    ai_tool: Optional[str] = typer.Option(None, "--ai-tool", help="Preferred AI tool for reviews"),
):
    """Configure Gerrit credentials (alias for setup)."""
    with _errors(OutputFormat.PLAIN, "setup_result"):
        _setup(host, username, password, ai_tool)


@app.command()
def status(ctx: typer.Context, json_flag: bool = JSON_OPTION, xml_flag: bool = XML_OPTION):
    """Check that configuration loads and the server is reachable."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "status_result"):
        result = connection_status(_service())

    def plain(out: Console) -> None:
        if result["connected"]:
            out.print(f"✓ Connected to {result['host']}")
        else:
            out.print(f"✗ Connection to {result['host']} failed")

    render(console, result, fmt, "status_result", plain)
    if not result["connected"]:
        raise typer.Exit(EXIT_GENERIC)


# Queries


def _print_grouped_changes(out: Console, result: dict) -> None:
    if not result["changes"]:
        out.print("No changes found")
        return
    for project, changes in group_by_project(result["changes"]):
        out.print(project, style="bold")
        for change in changes:
            out.print(f"  {change['number']}  {change['subject']}  [{change['status']}]  {change['owner']}")
        out.print()


def _search(ctx: typer.Context, query: Optional[str], limit: Optional[int], json_flag: bool, xml_flag: bool) -> None:
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "search_results"):
        result = search_changes(_service(), query, limit)
    render(console, result, fmt, "search_results", lambda out: _print_grouped_changes(out, result))


@app.command()
def search(
    ctx: typer.Context,
    query: Optional[str] = typer.Argument(None, help="Gerrit query (default: is:open)"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Maximum number of results"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Search changes with a Gerrit query."""
    _search(ctx, query, limit, json_flag, xml_flag)


@app.command("list")
def list_command(
    ctx: typer.Context,
    query: Optional[str] = typer.Argument(None, help="Gerrit query (default: is:open)"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Maximum number of results"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """List changes (default: open changes)."""
    _search(ctx, query, limit, json_flag, xml_flag)


@app.command()
def mine(
    ctx: typer.Context,
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Maximum number of results"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """List your open changes."""
    _search(ctx, "owner:self is:open", limit, json_flag, xml_flag)


def _print_show(out: Console, result: dict) -> None:
    change = result["change"]
    out.print(f"Change {change['number']}: {change['subject']}", style="bold")
    out.print(f"  Project: {change['project']}  Branch: {change['branch']}  Status: {change['status']}")
    out.print(f"  Owner:   {change['owner']}")
    out.print(f"  URL:     {result['url']}")
    out.print()
    diff = result["diff"]
    _print_text(diff if isinstance(diff, str) else to_json(diff))
    if result["comments"]:
        out.print()
        out.print("Inline comments", style="bold")
        for comment in result["comments"]:
            location = comment.get("path", "")
            if comment.get("line"):
                location += f":{comment['line']}"
            out.print(f"  {location} ({comment['author']}): {comment['message']}")
    if result["messages"]:
        out.print()
        out.print("Messages", style="bold")
        for message in result["messages"]:
            out.print(f"  {message['date']} {message['author']}: {message['message']}")


@app.command()
def show(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Show change details, diff, comments and messages."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "show_result"):
        change = resolve_change(change_id)
        result = show_change(_service(), change)
    render(console, result, fmt, "show_result", lambda out: _print_show(out, result))


@app.command()
def diff(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    file: Optional[str] = typer.Option(None, "--file", help="Diff a single file"),
    files_only: bool = typer.Option(False, "--files-only", help="List changed files only"),
    diff_format: str = typer.Option("unified", "--format", help="Output format: unified, json, files"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Show the diff of a change."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "diff_result"):
        if diff_format not in ("unified", "json", "files"):
            raise InvalidInputError(f"Invalid diff format: {diff_format}. Valid values: unified, json, files")
        change = resolve_change(change_id)
        result = _service().get_diff(
            change, format="files" if files_only else diff_format, file=file
        )

    def plain(out: Console) -> None:
        if isinstance(result, list):
            for path in result:
                _print_text(path)
        elif isinstance(result, str):
            _print_text(result)
        else:
            _print_text(to_json(result))

    render(console, {"change_id": change, "diff": result}, fmt, "diff_result", plain)


@app.command()
def comments(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """List inline comments of a change."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "comments_result"):
        change = resolve_change(change_id)
        result = list_comments(_service(), change)

    def plain(out: Console) -> None:
        if not result:
            out.print("No comments")
        for comment in result:
            location = comment.get("path", "")
            if comment.get("line"):
                location += f":{comment['line']}"
            out.print(f"{location} - {comment['author']} ({comment.get('updated', '')})", style="bold")
            out.print(f"  {comment['message']}")

    render(console, {"change_id": change, "comments": result}, fmt, "comments_result", plain)


@app.command("extract-url")
def extract_url(
    ctx: typer.Context,
    pattern: str = typer.Argument(..., help="Substring (or regex with --regex) URLs must match"),
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    include_comments: bool = typer.Option(False, "--include-comments", help="Also search inline comments"),
    regex: bool = typer.Option(False, "--regex", help="Treat pattern as a regular expression"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Extract URLs from change messages."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "extract_url_result"):
        change = resolve_change(change_id)
        urls = extract_urls(
            _service(), change, pattern, include_comments=include_comments, use_regex=regex
        )

    def plain(out: Console) -> None:
        for url in urls:
            _print_text(url)

    render(console, {"status": "success", "urls": urls}, fmt, "extract_url_result", plain)


@app.command("build-status")
def build_status_command(
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    watch: bool = typer.Option(False, "--watch", help="Poll until the build completes"),
    interval: float = typer.Option(10, "--interval", "-i", help="Polling interval in seconds"),
    timeout: float = typer.Option(1800, "--timeout", help="Maximum wait in seconds"),
    exit_status: bool = typer.Option(False, "--exit-status", help="Exit 1 when the build failed"),
):
    """Report the CI build state of a change as JSON."""
    with _errors(OutputFormat.PLAIN, "build_status"):
        change = resolve_change(change_id)
        service = _service()
        if watch:
            options = WatchOptions(interval=interval, timeout=timeout)
            state = BuildState.PENDING
            try:
                for state in watch_build_state(
                    lambda: build_status(service, change),
                    options,
                    progress=lambda msg: err_console.print(msg, highlight=False),
                ):
                    _print_text(json.dumps({"state": state.value}))
            except BuildWatchTimeout as e:
                raise typer.Exit(EXIT_INVALID_INPUT) from e
        else:
            state = build_status(service, change)
            _print_text(json.dumps({"state": state.value}))

    if exit_status and state is BuildState.FAILURE:
        raise typer.Exit(EXIT_GENERIC)


# Change actions


@app.command()
def comment(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    message: str = typer.Option(..., "--message", "-m", help="Comment message"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Post a review message on a change."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "comment_result"):
        change = resolve_change(change_id)
        result = post_comment(_service(), change, message)
    render(console, result, fmt, "comment_result", lambda out: out.print(f"✓ Comment posted on change {change}"))


@app.command()
def vote(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    code_review: Optional[int] = typer.Option(None, "--code-review", help="Code-Review vote (-2 to +2)"),
    verified: Optional[int] = typer.Option(None, "--verified", help="Verified vote (-1 to +1)"),
    label: Optional[List[str]] = typer.Option(
        None,
        "--label",
        click_type=click.Tuple([str, str]),
        metavar="NAME VALUE",
        help="Custom label vote (repeatable)",
    ),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Message posted with the vote"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Vote on a change."""
    fmt = _format(ctx, json_flag, xml_flag)
    label_args = [part for pair in (label or []) for part in pair]
    with _errors(fmt, "vote_result"):
        labels = parse_vote_labels(code_review, verified, label_args)
        change = resolve_change(change_id)
        result = cast_vote(_service(), change, labels, message)

    def plain(out: Console) -> None:
        votes = ", ".join(f"{name}{value:+d}" for name, value in labels.items())
        out.print(f"✓ Voted on change {change}: {votes}")

    render(console, result, fmt, "vote_result", plain)


def _print_reviewer_results(out: Console, result: dict, verb: str) -> None:
    for entry in result["reviewers"]:
        if entry["success"]:
            out.print(f"✓ {verb} {entry.get('name', entry['input'])}")
        else:
            err_console.print(f"✗ Failed: {entry['input']}: {entry['error']}")


@app.command("add-reviewer")
def add_reviewer(
    ctx: typer.Context,
    reviewers: List[str] = typer.Argument(..., help="Reviewer emails, usernames or groups"),
    change_id: Optional[str] = typer.Option(None, "--change", "-c", help="Change identifier (default: HEAD)"),
    cc: bool = typer.Option(False, "--cc", help="Add as CC instead of reviewer"),
    group: bool = typer.Option(False, "--group", help="Inputs are group identifiers"),
    notify: Optional[str] = typer.Option(None, "--notify", help="none, owner, owner_reviewers or all"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Add reviewers or CCs to a change."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "add_reviewer_result"):
        change = resolve_change(change_id)
        result = add_reviewers(_service(), change, reviewers, cc=cc, group=group, notify=notify)
    render(console, result, fmt, "add_reviewer_result",
           lambda out: _print_reviewer_results(out, result, "Added as CC" if cc else "Added"))
    if result["status"] != "success":
        raise typer.Exit(EXIT_GENERIC)


@app.command("remove-reviewer")
def remove_reviewer(
    ctx: typer.Context,
    reviewers: List[str] = typer.Argument(..., help="Reviewers to remove"),
    change_id: Optional[str] = typer.Option(None, "--change", "-c", help="Change identifier (default: HEAD)"),
    notify: Optional[str] = typer.Option(None, "--notify", help="none, owner, owner_reviewers or all"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Remove reviewers from a change."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "remove_reviewer_result"):
        change = resolve_change(change_id)
        result = remove_reviewers(_service(), change, reviewers, notify=notify)
    render(console, result, fmt, "remove_reviewer_result",
           lambda out: _print_reviewer_results(out, result, "Removed"))
    if result["status"] != "success":
        raise typer.Exit(EXIT_GENERIC)


@app.command()
def submit(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Submit a change after checking it is submittable."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "submit_result"):
        change = resolve_change(change_id)
        result = submit_change(_service(), change)

    def plain(out: Console) -> None:
        if result["status"] == "success":
            out.print(f"✓ Submitted change {result['change_number']}: {result['subject']}")
            out.print(f"  Status: {result['submit_status']}")
            return
        err_console.print(f"✗ Change {result['change_number']} cannot be submitted:")
        err_console.print(f"  {result['subject']}")
        err_console.print("  Reasons:")
        for reason in result["reasons"]:
            err_console.print(f"  - {reason}")

    render(console, result, fmt, "submit_result", plain)
    if result["status"] != "success":
        raise typer.Exit(EXIT_GENERIC)


@app.command()
def rebase(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    base: Optional[str] = typer.Option(None, "--base", help="Base revision (default: target branch)"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Rebase a change on the server."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "rebase_result"):
        change = resolve_change(change_id)
        result = rebase_change(_service(), change, base)
    render(console, result, fmt, "rebase_result", lambda out: out.print(f"✓ Rebased change {change}"))


@app.command()
def abandon(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Abandon message"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Abandon a change."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "abandon_result"):
        change = resolve_change(change_id)
        result = abandon_change(_service(), change, message)
    render(console, result, fmt, "abandon_result", lambda out: out.print(f"✓ Abandoned change {change}"))


@app.command()
def restore(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Restore message"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Restore an abandoned change."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "restore_result"):
        change = resolve_change(change_id)
        result = restore_change(_service(), change, message)
    render(console, result, fmt, "restore_result", lambda out: out.print(f"✓ Restored change {change}"))


@app.command()
def topic(
    ctx: typer.Context,
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    new_topic: Optional[str] = typer.Argument(None, help="Topic to set"),
    delete: bool = typer.Option(False, "--delete", help="Remove the topic"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Show, set or delete the topic of a change."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "topic_result"):
        change = resolve_change(change_id)
        result = manage_topic(_service(), change, new_topic, delete)

    def plain(out: Console) -> None:
        if result["action"] == "deleted":
            out.print(f"✓ Removed topic from change {change}")
        elif result["action"] == "set":
            out.print(f"✓ Set topic on change {change}: {result['topic']}")
        elif result["topic"]:
            _print_text(result["topic"])
        else:
            out.print(f"No topic set for change {change}")

    render(console, result, fmt, "topic_result", plain)


# Local git workflows


@app.command()
def checkout(
    ctx: typer.Context,
    change: str = typer.Argument(..., help="Change number, Change-Id, NUM/PS or change URL"),
    detach: bool = typer.Option(False, "--detach", help="Check out a detached HEAD"),
    remote: Optional[str] = typer.Option(None, "--remote", help="Git remote (default: auto-detect)"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Fetch a change and check it out locally."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "checkout_result"):
        result = checkout_change(_service(), Git(), change, detach=detach, remote=remote)

    def plain(out: Console) -> None:
        out.print(f"✓ Checked out change {result['change_number']} patchset {result['patchset']}: {result['subject']}")
        if result["branch"]:
            out.print(f"  Branch: {result['branch']}")
            if result["upstream"] is None:
                out.print("  Note: could not set upstream tracking branch")
        else:
            out.print("  Detached HEAD")
        out.print(f"  {result['url']}")

    render(console, result, fmt, "checkout_result", plain)


@app.command()
def push(
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Target branch (default: auto-detect)"),
    topic_name: Optional[str] = typer.Option(None, "--topic", "-t", help="Change topic"),
    reviewer: Optional[List[str]] = typer.Option(None, "--reviewer", "-r", help="Reviewer email (repeatable)"),
    cc: Optional[List[str]] = typer.Option(None, "--cc", help="CC email (repeatable)"),
    wip: bool = typer.Option(False, "--wip", help="Mark as work in progress"),
    draft: bool = typer.Option(False, "--draft", help="Alias for --wip"),
    ready: bool = typer.Option(False, "--ready", help="Mark as ready for review"),
    private: bool = typer.Option(False, "--private", help="Mark as private"),
    hashtag: Optional[List[str]] = typer.Option(None, "--hashtag", help="Hashtag (repeatable)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be pushed"),
):
    """Push HEAD to Gerrit for review."""
    options = PushOptions(
        topic=topic_name,
        wip=wip,
        draft=draft,
        ready=ready,
        private=private,
        reviewer=tuple(reviewer or ()),
        cc=tuple(cc or ()),
        hashtag=tuple(hashtag or ()),
    )
    with _errors(OutputFormat.PLAIN, "push_result"):
        config = load_config()
        service = create_gerrit_service(config)
        outcome = push_change(
            Git(), config.host, service.client, options, branch=branch, dry_run=dry_run
        )

    result = outcome.result
    if outcome.amended:
        console.print("✓ Added Change-Id to commit")
    if not result.pushed:
        console.print("No new changes to push")
        return
    for line in result.remote_lines:
        _print_text(f"  {line}")
    prefix = "Dry run: would push" if result.dry_run else "✓ Pushed"
    console.print(f"{prefix} to {result.remote} {result.refspec}")
    if result.change_url:
        console.print(f"  {result.change_url}")


@app.command("install-hook")
def install_hook(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing hook"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Install Gerrit's commit-msg hook."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "install_hook_result"):
        config = load_config()
        git = Git()
        git.ensure_repo()
        hooks = CommitHookService(git, config.host, create_gerrit_service(config).client)
        result = install_commit_hook(hooks, force=force)

    def plain(out: Console) -> None:
        mark = "✓" if result["status"] == "success" else "→"
        out.print(f"{mark} {result['message']}: {result['path']}")

    render(console, result, fmt, "install_hook_result", plain)


def _worktree_service(service: GerritService) -> GitWorktreeService:
    git = Git()
    return GitWorktreeService(git=git, remote=git.find_matching_remote(service.host) or "origin")


@app.command()
def workspace(
    ctx: typer.Context,
    change: str = typer.Argument(..., help="Change identifier, optionally NUM:PATCHSET"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Create a worktree with a change checked out and print its path."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "workspace"):
        service = _service()
        info, patchset = create_workspace(service, _worktree_service(service), change)
    result = {
        "path": str(info.path),
        "change_number": info.change_id,
        "patchset": patchset,
        "created": True,
    }

    def plain(out: Console) -> None:
        out.print("✓ Workspace created successfully!")
        out.print(f"  Run: cd {info.path}")

    render(console, result, fmt, "workspace", plain)


@app.command()
def review(
    change_id: Optional[str] = typer.Argument(None, help="Change number, Change-Id or URL (default: HEAD)"),
    tool: Optional[str] = typer.Option(None, "--tool", help="AI tool: claude, gemini, opencode or codex"),
    post: bool = typer.Option(False, "--comment", help="Post the review to Gerrit after confirmation"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompts"),
    prompt_file: Optional[str] = typer.Option(None, "--prompt", help="Custom review prompt file"),
):
    """Review a change with an AI tool in a temporary worktree."""
    with _errors(OutputFormat.PLAIN, "review_result"):
        config = load_config()
        service = create_gerrit_service(config)
        change = resolve_change(change_id)
        strategy = select_strategy(tool or config.ai_tool)
        err_console.print(f"✓ Using AI tool: {strategy.name}")

        user_prompt, custom = read_prompt(prompt_file)
        if prompt_file and not custom:
            err_console.print(f"⚠ Could not read custom prompt file: {prompt_file}, using default prompt")

        outcome = run_review(
            service,
            _worktree_service(service),
            strategy,
            change,
            user_prompt=user_prompt,
            progress=lambda msg: err_console.print(f"→ {msg}", highlight=False),
        )

        console.print("━━━━━━ INLINE COMMENTS ━━━━━━")
        if not outcome.inline_comments:
            console.print("No inline comments")
        for item in outcome.inline_comments:
            location = item.file + (f":{item.line}" if item.line else "")
            console.print(f"\n{location}")
            _print_text(item.message)
        if post and outcome.inline_comments:
            if yes or typer.confirm("Post these inline comments to Gerrit?", default=False):
                post_inline_comments(service, change, outcome.inline_comments)
                console.print(f"✓ Inline comments posted for {change}")
            else:
                console.print("→ Inline comments not posted")

        console.print("\n━━━━━━ OVERALL REVIEW ━━━━━━")
        _print_text(outcome.overall)
        if post:
            if yes or typer.confirm("Post this overall review to Gerrit?", default=False):
                post_overall_review(service, change, outcome.overall)
                console.print(f"✓ Overall review posted for {change}")
            else:
                console.print("→ Overall review not posted")

    console.print(f"✓ Review complete for {change}")


# Projects and groups


@app.command()
def projects(
    ctx: typer.Context,
    pattern: Optional[str] = typer.Option(None, "--pattern", help="Filter projects by name"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """List projects."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "projects_result"):
        rows = project_rows(_service(), pattern)

    def plain(out: Console) -> None:
        if not rows:
            out.print("No projects found")
            return
        for row in rows:
            _print_text(row["name"])

    render(console, {"status": "success", "count": len(rows), "projects": rows}, fmt, "projects_result", plain)


def _group_row(group: Any) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "owner": group.owner,
        "visible_to_all": group.visible_to_all,
    }


@groups_app.command("list")
def groups_list(
    ctx: typer.Context,
    pattern: Optional[str] = typer.Option(None, "--pattern", help="Filter groups by name regex"),
    owned: bool = typer.Option(False, "--owned", help="Only groups you own"),
    project: Optional[str] = typer.Option(None, "--project", help="Groups with rights on a project"),
    user: Optional[str] = typer.Option(None, "--user", help="Groups a user belongs to"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Maximum number of groups"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """List groups."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "groups_result"):
        groups = _service().list_groups(
            owned=owned, project=project, user=user, pattern=pattern, limit=limit
        )
    rows = [_group_row(g) for g in groups]

    def plain(out: Console) -> None:
        if not rows:
            out.print("No groups found")
            return
        out.print(make_table("Groups", ["Name", "ID", "Description"],
                             [(r["name"], r["id"], r["description"]) for r in rows]))

    render(console, {"status": "success", "count": len(rows), "groups": rows}, fmt, "groups_result", plain)


@groups_app.command("show")
def groups_show(
    ctx: typer.Context,
    group: str = typer.Argument(..., help="Group id or name"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """Show details of a group."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "group_detail_result"):
        detail = _service().get_group_detail(group)
    result = {
        "status": "success",
        "group": _group_row(detail),
        "members": [{"name": m.name, "email": m.email, "username": m.username} for m in detail.members],
        "includes": [{"id": g.id, "name": g.name} for g in detail.includes],
    }

    def plain(out: Console) -> None:
        out.print(f"Group: {detail.name}", style="bold")
        out.print(f"  ID: {detail.id}")
        if detail.description:
            out.print(f"  Description: {detail.description}")
        if detail.owner:
            out.print(f"  Owner: {detail.owner}")
        out.print(f"  Visible to all: {'yes' if detail.visible_to_all else 'no'}")
        out.print(f"  Members: {len(detail.members)}")
        for member in detail.members:
            out.print(f"    {member.display_name}")

    render(console, result, fmt, "group_detail_result", plain)


@groups_app.command("members")
def groups_members(
    ctx: typer.Context,
    group: str = typer.Argument(..., help="Group id or name"),
    json_flag: bool = JSON_OPTION,
    xml_flag: bool = XML_OPTION,
):
    """List the members of a group."""
    fmt = _format(ctx, json_flag, xml_flag)
    with _errors(fmt, "group_members_result"):
        members = _service().get_group_members(group)
    rows = [
        {"account_id": m.account_id, "name": m.name, "email": m.email, "username": m.username}
        for m in members
    ]

    def plain(out: Console) -> None:
        if not rows:
            out.print("No members")
            return
        out.print(make_table(f"Members of {group}", ["Name", "Email", "Username"],
                             [(r["name"], r["email"], r["username"]) for r in rows]))

    render(console, {"status": "success", "group_id": group, "count": len(rows), "members": rows},
           fmt, "group_members_result", plain)


if __name__ == "__main__":
    app()
