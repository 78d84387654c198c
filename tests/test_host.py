"""Tests for hosts and operator notification."""

import logging
from unittest.mock import MagicMock

import pytest
import requests

from conftest import RecordingHost
from vcs_mirror.mirror.host import ConsoleHost, NullHost, ReportingHost, WebhookNotifier


class TestConsoleHost:
    def test_confirm_reprompts_until_answer(self):
        answers = iter(["maybe", "", "YES"])
        prompts = []

        def fake_input(prompt):
            prompts.append(prompt)
            return next(answers)

        assert ConsoleHost(input_func=fake_input).confirm_checkin("git-to-svn-abc") is True
        assert len(prompts) == 3
        assert "git-to-svn-abc" in prompts[0]

    def test_confirm_no(self):
        assert ConsoleHost(input_func=lambda _: "n").confirm_checkin("x") is False

    def test_end_of_input_declines(self, caplog):
        def closed(_):
            raise EOFError

        assert ConsoleHost(input_func=closed).confirm_checkin("x") is False
        assert "declining checkin" in caplog.text

    def test_verbose_level(self, caplog):
        caplog.set_level(logging.DEBUG, logger="vcs_mirror.mirror.host")
        ConsoleHost(verbose=False).verbose("quiet %d", 1)
        ConsoleHost(verbose=True).verbose("loud %d", 2)
        levels = {r.getMessage(): r.levelno for r in caplog.records}
        assert levels == {"quiet 1": logging.DEBUG, "loud 2": logging.INFO}

    def test_error_prefix(self, caplog):
        ConsoleHost().error("lock failed on %s", "/trunk")
        assert "Error!!! lock failed on /trunk" in caplog.text


class TestNullHost:
    def test_approves_and_stays_silent(self, caplog):
        host = NullHost()
        assert host.confirm_checkin("x") is True
        host.status("nothing")
        host.error("nothing")
        assert caplog.records == []


class TestReportingHost:
    def test_errors_are_forwarded(self):
        inner = RecordingHost(answers=[False])
        notifier = MagicMock()
        host = ReportingHost(inner, notifier)

        host.status("working on %s", "abc")
        host.error("failed: %s", "conflict")

        assert host.confirm_checkin("s") is False
        notifier.notify.assert_called_once_with("failed: conflict")
        assert inner.messages == [("status", "working on abc"), ("error", "failed: conflict")]


class TestWebhookNotifier:
    def test_posts_json(self):
        session = MagicMock()
        notifier = WebhookNotifier("https://hooks.example.com/x", source="prod", session=session)

        notifier.notify("checkin conflicted")

        session.post.assert_called_once_with(
            "https://hooks.example.com/x",
            json={"source": "prod", "message": "checkin conflicted"},
            timeout=(10, 30),
        )
        session.post.return_value.raise_for_status.assert_called_once()

    @pytest.mark.parametrize(
        "failure",
        [requests.ConnectionError("down"), requests.HTTPError("500 Server Error")],
    )
    def test_delivery_failure_is_logged(self, failure, caplog):
        session = MagicMock()
        session.post.side_effect = failure
        WebhookNotifier("https://hooks.example.com/x", session=session).notify("boom")
        assert "Failed to deliver notification" in caplog.text
