# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Tests for command orchestration.

The Gerrit service and git wrappers are MagicMocks; the operations are
checked for the calls they make and the data they return.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, call

import pytest

from ger.build_status import BuildState
from ger.commit_hook import CommitHookService
from ger.exceptions import GerError, InvalidInputError, NoChangeIdError, PatchsetFetchError
from ger.gerrit.client import GerritNotFoundError, GerritRestError
from ger.gerrit.models import (
    ChangeInfo,
    CommentInfo,
    MessageInfo,
    ProjectInfo,
    ReviewerResult,
    RevisionInfo,
    SubmitInfo,
)
from ger.gerrit.service import GerritService
from ger.gerrit.urls import GerritUrlBuilder
from ger.git import Git
from ger.operations import (
    add_reviewers,
    build_status,
    cast_vote,
    checkout_change,
    compile_safe_regex,
    connection_status,
    create_workspace,
    extract_urls,
    group_by_project,
    install_commit_hook,
    list_comments,
    manage_topic,
    normalize_notify,
    parse_vote_labels,
    post_comment,
    project_rows,
    push_change,
    read_prompt,
    rebase_change,
    remove_reviewers,
    resolve_change,
    run_review,
    search_changes,
    show_change,
    submit_change,
)
from ger.push import PushError, PushOptions
from ger.review import ReviewStrategy
from ger.worktree import GitWorktreeService, WorktreeInfo

HOST = "https://gerrit.example.org"
CHANGE_ID = "I0123456789abcdef0123456789abcdef01234567"


def _change(**overrides) -> ChangeInfo:
    data = {
        "_number": 12345,
        "change_id": CHANGE_ID,
        "project": "releng/tools",
        "branch": "main",
        "subject": "Fix the thing",
        "status": "NEW",
        "owner": {"name": "Jane Doe"},
    }
    data.update(overrides)
    return ChangeInfo.parse(data)


@pytest.fixture
def service():
    mock = MagicMock(spec=GerritService)
    mock.host = HOST
    mock.url_builder = GerritUrlBuilder(HOST)
    mock.get_change.return_value = _change()
    return mock


@pytest.fixture
def git():
    return MagicMock(spec=Git)


class TestResolveChange:
    """Tests for resolve_change."""

    def test_url_reduced_to_number(self):
        """Change URLs are reduced to their number."""
        assert resolve_change(f"{HOST}/c/releng/tools/+/12345") == "12345"

    def test_change_id(self):
        """Change-Ids are accepted."""
        assert resolve_change(CHANGE_ID) == CHANGE_ID

    def test_from_head(self, git):
        """Without input the HEAD commit's Change-Id is used."""
        git.change_id_from_head.return_value = CHANGE_ID
        assert resolve_change(None, git) == CHANGE_ID
        assert resolve_change("  ", git) == CHANGE_ID

    def test_head_without_change_id(self, git):
        """A HEAD commit without trailer is reported."""
        git.change_id_from_head.side_effect = NoChangeIdError()
        with pytest.raises(NoChangeIdError):
            resolve_change(None, git)

    def test_invalid(self):
        """Garbage input is rejected."""
        with pytest.raises(InvalidInputError):
            resolve_change("not-a-change")


class TestQueries:
    """Tests for search, show and comments."""

    def test_search_defaults_to_open(self, service):
        """An empty query searches open changes."""
        service.list_changes.return_value = [_change(), _change(_number=2, project="Alpha")]

        result = search_changes(service, "  ", limit=10)

        service.list_changes.assert_called_once_with("is:open", limit=10)
        assert result["query"] == "is:open"
        assert result["count"] == 2
        assert result["changes"][0]["owner"] == "Jane Doe"

    def test_group_by_project(self):
        """Projects are sorted case-insensitively."""
        changes = [{"project": "beta"}, {"project": "Alpha"}, {"project": "beta"}]

        grouped = group_by_project(changes)

        assert [name for name, _ in grouped] == ["Alpha", "beta"]
        assert len(grouped[1][1]) == 2

    def test_list_comments(self, service):
        """Comments are flattened oldest first; the commit message is labelled."""
        service.get_comments.return_value = {
            "src/a.py": [CommentInfo(line=3, message="later", updated="2025-01-02")],
            "/COMMIT_MSG": [CommentInfo(line=1, message="typo", updated="2025-01-01", unresolved=True)],
        }

        comments = list_comments(service, "12345")

        assert comments == [
            {"path": "Commit Message", "line": 1, "author": "Unknown", "updated": "2025-01-01",
             "message": "typo", "unresolved": True},
            {"path": "src/a.py", "line": 3, "author": "Unknown", "updated": "2025-01-02", "message": "later"},
        ]

    def test_show_change(self, service):
        """show combines details, diff, comments and filtered messages."""
        service.get_diff.return_value = "diff text"
        service.get_comments.return_value = {}
        service.get_messages.return_value = [
            MessageInfo(id="2", date="2025-01-02", message="Second"),
            MessageInfo(id="1", date="2025-01-01", message="Uploaded", tag="autogenerated:gerrit:newPatchSet"),
            MessageInfo(id="0", date="2025-01-01", message="First"),
        ]

        result = show_change(service, "12345")

        assert result["url"] == f"{HOST}/c/releng/tools/+/12345"
        assert result["diff"] == "diff text"
        assert [m["message"] for m in result["messages"]] == ["First", "Second"]

    def test_build_status_not_found(self, service):
        """A missing change yields not_found."""
        service.get_messages.side_effect = GerritNotFoundError("gone", status_code=404)

        assert build_status(service, "99999") is BuildState.NOT_FOUND

    def test_build_status_running(self, service):
        """The message timeline drives the state."""
        service.get_messages.return_value = [
            MessageInfo(id="1", date="2025-01-01 10:00", message="Build Started", _revision_number=1)
        ]

        assert build_status(service, "12345") is BuildState.RUNNING


class TestExtractUrls:
    """Tests for URL extraction."""

    def test_substring_match(self, service):
        """URLs are matched case-insensitively by substring, messages first."""
        service.get_messages.return_value = [
            MessageInfo(id="2", date="2025-01-02", message="Build Failed https://JENKINS.example.org/job/2/"),
            MessageInfo(id="1", date="2025-01-01", message="Build Started https://jenkins.example.org/job/1/"),
        ]
        service.get_comments.return_value = {
            "a.py": [CommentInfo(message="see https://docs.example.org and https://jenkins.example.org/job/3/")]
        }

        urls = extract_urls(service, "12345", "jenkins", include_comments=True)

        assert urls == [
            "https://jenkins.example.org/job/1/",
            "https://JENKINS.example.org/job/2/",
            "https://jenkins.example.org/job/3/",
        ]

    def test_regex_match(self, service):
        """Regex mode filters with the compiled pattern."""
        service.get_messages.return_value = [
            MessageInfo(id="1", date="2025-01-01", message="https://ci.example.org/job/12 https://ci.example.org/view"),
        ]

        assert extract_urls(service, "12345", r"job/\d+", use_regex=True) == ["https://ci.example.org/job/12"]

    def test_empty_pattern(self, service):
        """An empty pattern is rejected."""
        with pytest.raises(InvalidInputError, match="Pattern cannot be empty"):
            extract_urls(service, "12345", "")

    def test_long_pattern(self, service):
        """Overlong patterns are rejected."""
        with pytest.raises(InvalidInputError, match="too long"):
            extract_urls(service, "12345", "a" * 501)

    @pytest.mark.parametrize("pattern", [r"(a+)+", r"(a*)*b", r"[ab]+++"])
    def test_dangerous_regex(self, pattern):
        """Nested quantifiers are refused."""
        with pytest.raises(InvalidInputError, match="dangerous"):
            compile_safe_regex(pattern)

    def test_invalid_regex(self):
        """Syntax errors are reported as invalid input."""
        with pytest.raises(InvalidInputError, match="Invalid regular expression"):
            compile_safe_regex("(unclosed")


class TestVotesAndComments:
    """Tests for label parsing, votes and comments."""

    def test_labels_combined(self):
        """Shortcut options and --label pairs merge."""
        labels = parse_vote_labels(2, 1, ["Custom", "-1"])
        assert labels == {"Code-Review": 2, "Verified": 1, "Custom": -1}

    def test_odd_label_args(self):
        """Labels come in pairs."""
        with pytest.raises(InvalidInputError, match="name-value pairs"):
            parse_vote_labels(label_args=["Custom"])

    def test_non_integer_label(self):
        """Label values must be integers."""
        with pytest.raises(InvalidInputError, match="Invalid label value for Custom: x"):
            parse_vote_labels(label_args=["Custom", "x"])

    def test_no_labels(self):
        """A vote needs at least one label."""
        with pytest.raises(InvalidInputError, match="At least one label is required"):
            parse_vote_labels()

    def test_cast_vote(self, service):
        """Votes are posted with the optional message."""
        result = cast_vote(service, "12345", {"Code-Review": 1}, "LGTM")

        service.post_review.assert_called_once_with("12345", labels={"Code-Review": 1}, message="LGTM")
        assert result == {"status": "success", "change_id": "12345", "labels": {"Code-Review": 1}, "message": "LGTM"}

    def test_comment_requires_message(self, service):
        """Blank comments are refused before any request."""
        with pytest.raises(InvalidInputError, match="Message is required"):
            post_comment(service, "12345", "  ")
        service.post_review.assert_not_called()


class TestReviewers:
    """Tests for reviewer management."""

    @pytest.mark.parametrize(("raw", "expected"), [("none", "NONE"), ("Owner_Reviewers", "OWNER_REVIEWERS"), (None, None)])
    def test_notify_levels(self, raw, expected):
        """Notify levels are case-insensitive."""
        assert normalize_notify(raw) == expected

    def test_bad_notify(self):
        """Unknown notify levels list the valid ones."""
        with pytest.raises(InvalidInputError, match="Valid values: none, owner, owner_reviewers, all"):
            normalize_notify("everyone")

    def test_add_partial_failure(self, service):
        """Failures are reported per reviewer."""
        service.add_reviewer.side_effect = [
            ReviewerResult(input="a@example.org", reviewers=[{"name": "Alice"}]),
            ReviewerResult(input="nobody", error="nobody does not identify a registered user"),
            GerritRestError("boom", status_code=500),
        ]

        result = add_reviewers(service, "12345", ["a@example.org", "nobody", "c@example.org"], cc=True, notify="none")

        assert result["status"] == "partial_failure"
        assert result["state"] == "cc"
        assert result["reviewers"] == [
            {"input": "a@example.org", "success": True, "name": "Alice"},
            {"input": "nobody", "success": False, "error": "nobody does not identify a registered user"},
            {"input": "c@example.org", "success": False, "error": "boom"},
        ]
        assert service.add_reviewer.call_args_list[0] == call("12345", "a@example.org", state="CC", notify="NONE")

    def test_group_rejects_emails(self, service):
        """--group expects group names, not addresses."""
        with pytest.raises(InvalidInputError, match="Did you mean to omit --group"):
            add_reviewers(service, "12345", ["devs", "a@example.org"], group=True)

    def test_add_requires_reviewer(self, service):
        """At least one reviewer is needed."""
        with pytest.raises(InvalidInputError, match="At least one reviewer"):
            add_reviewers(service, "12345", [])

    def test_remove_continues_after_failure(self, service):
        """One failed removal does not stop the others."""
        service.remove_reviewer.side_effect = [GerritNotFoundError("not a reviewer", 404), None]

        result = remove_reviewers(service, "12345", ["x@example.org", "y@example.org"])

        assert result["status"] == "partial_failure"
        assert [r["success"] for r in result["reviewers"]] == [False, True]


class TestChangeActions:
    """Tests for submit, rebase and topic."""

    def test_submit_blocked(self, service):
        """A non-submittable change is reported with reasons and not submitted."""
        service.get_change.return_value = _change(
            submittable=False,
            work_in_progress=True,
            labels={"Code-Review": {}, "Verified": {"approved": {"name": "CI"}}},
        )

        result = submit_change(service, "12345")

        assert result["status"] == "error"
        assert result["reasons"] == ["Change is marked as work-in-progress", "Missing Code-Review+2 approval"]
        service.submit_change.assert_not_called()

    def test_submit(self, service):
        """A submittable change is submitted."""
        service.get_change.return_value = _change(submittable=True)
        service.submit_change.return_value = SubmitInfo(status="MERGED")

        result = submit_change(service, "12345")

        assert result["status"] == "success"
        assert result["submit_status"] == "MERGED"

    def test_rebase_conflict(self, service):
        """Conflicting files are named in the error."""
        body = "The change could not be rebased due to a conflict during merge.\n\nmerge conflict(s):\na.py\nb.py"
        service.rebase_change.side_effect = GerritRestError(body, status_code=409, response_body=body)

        with pytest.raises(GerritRestError, match="Rebase failed due to merge conflicts: a.py, b.py") as exc_info:
            rebase_change(service, "12345")
        assert exc_info.value.exit_code == 3

    def test_rebase_other_error_propagates(self, service):
        """Non-conflict errors pass through unchanged."""
        error = GerritRestError("forbidden", status_code=403)
        service.rebase_change.side_effect = error

        with pytest.raises(GerritRestError) as exc_info:
            rebase_change(service, "12345")
        assert exc_info.value is error

    def test_topic_actions(self, service):
        """Topics can be read, set and deleted."""
        service.get_topic.return_value = ""
        service.set_topic.return_value = "release"

        assert manage_topic(service, "12345")["topic"] is None
        assert manage_topic(service, "12345", " release ")["topic"] == "release"
        service.set_topic.assert_called_once_with("12345", "release")
        assert manage_topic(service, "12345", delete=True)["action"] == "deleted"

    def test_topic_not_found_means_unset(self, service):
        """A 404 from the topic endpoint reads as no topic."""
        service.get_topic.side_effect = GerritNotFoundError("Not found", status_code=404)

        result = manage_topic(service, "12345")

        assert result["status"] == "success"
        assert result["topic"] is None


class TestCheckout:
    """Tests for checkout_change."""

    def _setup(self, service, git):
        service.get_change.return_value = _change(
            current_revision="abc",
            revisions={"abc": {"_number": 3, "ref": "refs/changes/45/12345/3"}},
        )
        git.find_matching_remote.return_value = "gerrit"

    def test_new_branch(self, service, git):
        """A new review branch is created from the fetched patchset."""
        self._setup(service, git)
        git.local_branch_exists.return_value = False

        result = checkout_change(service, git, "12345")

        assert git.run.call_args_list == [
            call(["fetch", "gerrit", "refs/changes/45/12345/3"]),
            call(["checkout", "-b", "review/12345", "FETCH_HEAD"]),
            call(["branch", "--set-upstream-to=gerrit/main"]),
        ]
        assert result["branch"] == "review/12345"
        assert result["upstream"] == "gerrit/main"
        assert result["patchset"] == 3

    def test_existing_branch_reset(self, service, git):
        """An existing review branch is switched to and reset."""
        self._setup(service, git)
        git.local_branch_exists.return_value = True
        git.current_branch.return_value = "main"

        checkout_change(service, git, "12345")

        assert call(["checkout", "review/12345"]) in git.run.call_args_list
        assert call(["reset", "--hard", "FETCH_HEAD"]) in git.run.call_args_list

    def test_detached_explicit_patchset(self, service, git):
        """NUM/PS fetches that patchset and --detach checks out FETCH_HEAD."""
        self._setup(service, git)
        service.get_revision.return_value = RevisionInfo(_number=2, ref="refs/changes/45/12345/2")

        result = checkout_change(service, git, "12345/2", detach=True, remote="origin")

        service.get_revision.assert_called_once_with("12345", "2")
        assert git.run.call_args_list == [
            call(["fetch", "origin", "refs/changes/45/12345/2"]),
            call(["checkout", "FETCH_HEAD"]),
        ]
        assert result["branch"] is None
        assert result["detached"] is True

    def test_invalid_ref(self, service, git):
        """Refs from the server are validated before use."""
        self._setup(service, git)
        service.get_change.return_value = _change(
            current_revision="abc", revisions={"abc": {"_number": 3, "ref": "refs/heads/main; rm -rf /"}}
        )

        with pytest.raises(InvalidInputError, match="Invalid Gerrit ref format"):
            checkout_change(service, git, "12345")
        git.run.assert_not_called()


class TestPushAndHook:
    """Tests for push_change and install_commit_hook."""

    def test_no_matching_remote(self, git):
        """Pushing needs a remote on the Gerrit host."""
        git.find_matching_remote.return_value = None

        with pytest.raises(PushError, match="No git remote found matching Gerrit host"):
            push_change(git, HOST, MagicMock(), PushOptions())

    def test_push(self, git, monkeypatch):
        """The matching remote and detected branch are used."""
        git.find_matching_remote.return_value = "gerrit"
        git.tracking_branch.return_value = "main"
        monkeypatch.setattr(CommitHookService, "ensure_change_id", lambda self: False)
        pushed = {}

        def fake_push(git_, remote, branch, options, dry_run=False):
            pushed.update(remote=remote, branch=branch, dry_run=dry_run)
            return "result"

        monkeypatch.setattr("ger.operations.push_for_review", fake_push)

        outcome = push_change(git, HOST, MagicMock(), PushOptions(), dry_run=True)

        assert outcome.result == "result"
        assert outcome.amended is False
        assert pushed == {"remote": "gerrit", "branch": "main", "dry_run": True}

    def test_hook_already_installed(self, tmp_path):
        """An installed hook is kept without --force."""
        hooks = MagicMock(spec=CommitHookService)
        hooks.hook_path.return_value = tmp_path / "commit-msg"
        hooks.has_hook.return_value = True

        result = install_commit_hook(hooks)

        assert result["status"] == "skipped"
        hooks.install_hook.assert_not_called()

        assert install_commit_hook(hooks, force=True)["status"] == "success"
        hooks.install_hook.assert_called_once_with()


class TestWorkspaceAndReview:
    """Tests for workspaces and AI review."""

    def test_workspace_with_patchset(self, service, tmp_path):
        """NUM:PS checks out that patchset in a kept worktree."""
        worktrees = MagicMock(spec=GitWorktreeService)
        info = WorktreeInfo(tmp_path, "12345", tmp_path, 1, 1)
        worktrees.create_worktree.return_value = info
        worktrees.fetch_and_checkout_patchset.return_value = 4

        assert create_workspace(service, worktrees, "12345:4") == (info, 4)
        worktrees.fetch_and_checkout_patchset.assert_called_once_with(info, 4)
        worktrees.cleanup.assert_not_called()

    def test_workspace_cleanup_on_fetch_error(self, service, tmp_path):
        """A failed fetch removes the new worktree."""
        worktrees = MagicMock(spec=GitWorktreeService)
        info = WorktreeInfo(tmp_path, "12345", tmp_path, 1, 1)
        worktrees.create_worktree.return_value = info
        worktrees.fetch_and_checkout_patchset.side_effect = PatchsetFetchError("no such ref")

        with pytest.raises(GerError):
            create_workspace(service, worktrees, "12345")
        worktrees.cleanup.assert_called_once_with(info)

    def test_workspace_from_url(self, service, tmp_path):
        """A change URL is not mistaken for NUM:PS."""
        worktrees = MagicMock(spec=GitWorktreeService)
        info = WorktreeInfo(tmp_path, "12345", tmp_path, 1, 1)
        worktrees.create_worktree.return_value = info
        worktrees.fetch_and_checkout_patchset.return_value = 2

        create_workspace(service, worktrees, "https://gerrit.example.org/c/releng/tools/+/12345")

        worktrees.create_worktree.assert_called_once_with("12345")
        worktrees.fetch_and_checkout_patchset.assert_called_once_with(info, None)

    def test_workspace_bad_patchset(self, service):
        """Patchset suffixes must be positive numbers."""
        with pytest.raises(InvalidInputError, match="Invalid patchset number"):
            create_workspace(service, MagicMock(spec=GitWorktreeService), "12345:x")

    def test_run_review(self, service, tmp_path, monkeypatch):
        """Both passes run in the worktree and invalid comments are dropped."""
        monkeypatch.chdir(tmp_path)
        service.get_comments.return_value = {}
        service.get_messages.return_value = []
        worktrees = MagicMock(spec=GitWorktreeService)
        info = WorktreeInfo(tmp_path, "12345", tmp_path, 1, 1)
        worktrees.create_worktree.return_value = info
        worktrees.changed_files.return_value = ["src/a.py"]
        strategy = MagicMock(spec=ReviewStrategy)
        strategy.name = "claude"
        strategy.execute.side_effect = [
            json.dumps([
                {"file": "a.py", "line": 2, "message": "Use a constant"},
                {"file": "zzz.py", "line": 1, "message": "not in change"},
            ]),
            "Overall this looks fine.",
        ]
        progress = []

        outcome = run_review(service, worktrees, strategy, "12345", user_prompt="", progress=progress.append)

        assert outcome.strategy == "claude"
        assert [c.file for c in outcome.inline_comments] == ["src/a.py"]
        assert outcome.overall == "Overall this looks fine."
        assert "Filtered 1 invalid comments, 1 remain" in progress
        assert strategy.execute.call_args_list[0].kwargs == {"cwd": tmp_path}
        worktrees.cleanup.assert_called_once_with(info)

    def test_read_prompt(self, tmp_path):
        """A custom prompt file wins over the bundled default."""
        path = tmp_path / "prompt.md"
        path.write_text("Custom", encoding="utf-8")

        assert read_prompt(str(path)) == ("Custom", True)
        text, custom = read_prompt(str(tmp_path / "missing.md"))
        assert custom is False
        assert text.strip()


class TestServerInfo:
    """Tests for status and project listing."""

    def test_connection_status(self, service):
        """The host and connectivity are reported."""
        service.test_connection.return_value = False

        assert connection_status(service) == {"status": "error", "connected": False, "host": HOST}

    def test_project_rows(self, service):
        """Project rows carry name, description and state."""
        service.list_projects.return_value = [ProjectInfo(name="tools", state="ACTIVE")]

        assert project_rows(service, "to") == [{"name": "tools", "description": None, "state": "ACTIVE"}]
        service.list_projects.assert_called_once_with("to")
