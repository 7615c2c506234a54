import logging
import unittest
from types import SimpleNamespace

logging.disable(logging.CRITICAL)


class _FakeCli:
    def __init__(self, stdout="", error=None):
        self.stdout = stdout
        self.error = error
        self.calls = []

    def run(self, args):
        from tasklink.services.glab_cli import CliResult

        self.calls.append(list(args))
        if self.error is not None:
            raise self.error
        return CliResult(returncode=0, stdout=self.stdout, stderr="")


class _FakeResolver:
    def __init__(self, mapping):
        self.mapping = mapping

    def resolve(self, identity):
        return self.mapping.get(identity)


def _task(**kwargs):
    from tasklink.services.issue_creator import TaskDetails

    fields = {"task_id": "t-1", "summary": "Fix login", "description": "Steps to reproduce"}
    fields.update(kwargs)
    return TaskDetails(**fields)


class IssueDescriptionTests(unittest.TestCase):
    def test_backlink_appended_once(self):
        from tasklink.services.issue_creator import build_issue_description

        task = _task()
        first = build_issue_description(task, "https://tasks/t-1")
        self.assertEqual(
            first, "Steps to reproduce\n\n---\n🔗 **Task**: [Fix login](https://tasks/t-1)"
        )

        again = build_issue_description(_task(description=first), "https://tasks/t-1")
        self.assertEqual(again, first)

    def test_empty_description_is_only_the_backlink(self):
        from tasklink.services.issue_creator import build_issue_description

        out = build_issue_description(_task(description=None), "https://tasks/t-1")
        self.assertEqual(out, "---\n🔗 **Task**: [Fix login](https://tasks/t-1)")

    def test_due_date_seconds_and_milliseconds(self):
        from tasklink.services.issue_creator import format_due_date

        self.assertEqual(format_due_date("1735689600"), "2025-01-01")
        self.assertEqual(format_due_date("1735689600000"), "2025-01-01")
        self.assertIsNone(format_due_date("0"))
        self.assertIsNone(format_due_date("soon"))

    def test_parse_issue_iid(self):
        from tasklink.services.issue_creator import parse_issue_iid

        out = "Creating issue in group/app\n#42 Fix login (less than a minute ago)\n"
        self.assertEqual(parse_issue_iid(out), 42)
        self.assertIsNone(parse_issue_iid("created"))


class IssueCreatorTests(unittest.TestCase):
    def _creator(self, cli, resolver=None, lookup=None):
        from tasklink.services.issue_creator import IssueCreator

        return IssueCreator(cli, resolver, gitlab_url="https://tracker/", lookup=lookup)

    def test_create_builds_argv_and_parses_iid(self):
        from tasklink.services.issue_creator import CreateOutcome

        cli = _FakeCli(stdout="#42 Fix login\nhttps://tracker/group/app/-/issues/42\n")
        creator = self._creator(cli, _FakeResolver({"ou_alice": "alice"}))
        task = _task(due_timestamp="1735689600", assignee_task_identities=["ou_alice", "ou_bob"])

        result = creator.create_issue_from_task(task, "https://tasks/t-1", "group/app")

        self.assertEqual(result.outcome, CreateOutcome.CREATED)
        self.assertTrue(result.success)
        self.assertEqual(result.issue_iid, 42)
        self.assertEqual(result.issue_url, "https://tracker/group/app/-/issues/42")
        self.assertEqual(result.assignee_task_identity, "ou_alice")
        self.assertEqual(result.assignee_tracker_identity, "alice")

        args = cli.calls[0]
        self.assertEqual(args[:4], ["issue", "create", "-t", "Fix login"])
        self.assertIn("-R", args)
        self.assertEqual(args[args.index("-R") + 1], "group/app")
        self.assertEqual(args[args.index("--assignee") + 1], "alice")
        self.assertEqual(args[args.index("--due-date") + 1], "2025-01-01")

    def test_unresolved_assignee_creates_unassigned(self):
        cli = _FakeCli(stdout="#7 x")
        creator = self._creator(cli, _FakeResolver({}))

        result = creator.create_issue_from_task(
            _task(assignee_task_identities=["ou_ghost"]), None, "group/app"
        )

        self.assertTrue(result.success)
        self.assertNotIn("--assignee", cli.calls[0])
        self.assertEqual(result.assignee_task_identity, "ou_ghost")
        self.assertIsNone(result.assignee_tracker_identity)

    def test_unparsable_output_is_ambiguous(self):
        from tasklink.services.issue_creator import CreateOutcome

        result = self._creator(_FakeCli(stdout="done")).create_issue_from_task(
            _task(), None, "group/app"
        )
        self.assertEqual(result.outcome, CreateOutcome.AMBIGUOUS)
        self.assertIsNone(result.issue_iid)

    def test_timeout_is_ambiguous_and_exit_failure_is_failed(self):
        from tasklink.services.glab_cli import GlabCliError
        from tasklink.services.issue_creator import CreateOutcome

        timed_out = self._creator(
            _FakeCli(error=GlabCliError("timed out", timed_out=True))
        ).create_issue_from_task(_task(), None, "group/app")
        self.assertEqual(timed_out.outcome, CreateOutcome.AMBIGUOUS)

        failed = self._creator(
            _FakeCli(error=GlabCliError("exit 1", returncode=1, stderr="403"))
        ).create_issue_from_task(_task(), None, "group/app")
        self.assertEqual(failed.outcome, CreateOutcome.FAILED)
        self.assertIn("exit 1", failed.error)

    def test_update_runs_edit_then_close(self):
        cli = _FakeCli()
        creator = self._creator(cli)
        task = _task(summary="New title", completed_at="1735689600000")

        result = creator.update_issue_from_task(
            42, task, ["summary", "completed_at", "priority"], "group/app"
        )

        self.assertTrue(result.success)
        self.assertEqual(result.commands_run, 2)
        self.assertEqual(cli.calls[0], ["issue", "update", "42", "-t", "New title", "-R", "group/app"])
        self.assertEqual(cli.calls[1], ["issue", "close", "42", "-R", "group/app"])

    def test_update_reopens_when_completion_cleared(self):
        cli = _FakeCli()
        result = self._creator(cli).update_issue_from_task(
            5, _task(completed_at="0"), ["completed_at"], "group/app"
        )
        self.assertTrue(result.success)
        self.assertEqual(cli.calls, [["issue", "reopen", "5", "-R", "group/app"]])

    def test_close_and_reopen_report_failures(self):
        from tasklink.services.glab_cli import GlabCliError

        ok = self._creator(_FakeCli()).close_issue("group/app", 3)
        self.assertTrue(ok.success)

        bad = self._creator(_FakeCli(error=GlabCliError("nope", returncode=1))).reopen_issue(
            "group/app", 3
        )
        self.assertFalse(bad.success)
        self.assertEqual(bad.error, "nope")

    def test_find_issue_by_task_url_requires_exact_backlink(self):
        lookup = SimpleNamespace(
            find_issues_mentioning=lambda project, text: [
                SimpleNamespace(iid=9, description="see https://tasks/t-1 maybe"),
                SimpleNamespace(iid=11, description="---\n🔗 **Task**: [x](https://tasks/t-1)"),
            ]
        )
        creator = self._creator(_FakeCli(), lookup=lookup)

        self.assertEqual(creator.find_issue_by_task_url("group/app", "https://tasks/t-1"), 11)
        self.assertIsNone(creator.find_issue_by_task_url("group/app", None))
        self.assertIsNone(self._creator(_FakeCli()).find_issue_by_task_url("group/app", "u"))


if __name__ == "__main__":
    unittest.main()
