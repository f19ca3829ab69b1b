from __future__ import annotations

import subprocess
import sys
import textwrap
import threading
import time
from pathlib import Path

from tests.helpers import drain_until, make_config, make_summary
from zen_gateway import MailAuthError, MailConnectionError
from zen_tasks import BackgroundRunner, TaskKind, TaskResult


def test_drain_is_empty_and_non_blocking_without_work() -> None:
    runner = BackgroundRunner()

    assert runner.drain() == []


def test_refresh_list_posts_notice_then_result() -> None:
    calls = []
    summaries = [make_summary(1), make_summary(2)]

    def list_fn(imap, limit):
        calls.append((imap.host, limit))
        return summaries

    runner = BackgroundRunner(limit=20, list_fn=list_fn)
    runner.refresh_list(make_config())

    results = drain_until(runner, 2)

    assert results[0] == TaskResult(kind=TaskKind.NOTICE, text="Fetching mail list...")
    assert results[1] == TaskResult(kind=TaskKind.LIST, summaries=tuple(summaries))
    assert calls == [("imap.example.test", 20)]


def test_fetch_body_carries_header_through() -> None:
    header = make_summary(42)
    runner = BackgroundRunner(body_fn=lambda imap, uid: f"body of {uid}")

    runner.fetch_body(make_config(), header)
    results = drain_until(runner, 2)

    assert results[0].text == "Fetching body (uid=42)..."
    assert results[1] == TaskResult(kind=TaskKind.BODY, header=header, body="body of 42")


def test_failures_are_reported_once_without_retry() -> None:
    attempts = []

    def failing_send(smtp, user, to, subject, body):
        attempts.append(to)
        raise MailAuthError("login rejected for me@example.test")

    runner = BackgroundRunner(send_fn=failing_send)
    runner.send(make_config(), "jane@x.com", "Hi", "Body")

    results = drain_until(runner, 2)

    assert [result.kind for result in results] == [TaskKind.NOTICE, TaskKind.SEND]
    assert results[1].ok is False
    assert results[1].error == "login rejected for me@example.test"
    assert attempts == ["jane@x.com"]
    assert drain_until(runner, 1, timeout=0.1) == []


def test_unexpected_worker_exception_still_delivers_result() -> None:
    def broken_list(imap, limit):
        raise KeyError("uid")

    runner = BackgroundRunner(list_fn=broken_list)
    runner.refresh_list(make_config())

    results = drain_until(runner, 2)

    assert results[1].kind is TaskKind.LIST
    assert results[1].ok is False
    assert "uid" in results[1].error


def test_results_arrive_in_completion_order() -> None:
    release_slow = threading.Event()

    def slow_list(imap, limit):
        release_slow.wait(5)
        return [make_summary(1)]

    def fast_body(imap, uid):
        return "fast"

    runner = BackgroundRunner(list_fn=slow_list, body_fn=fast_body)
    runner.refresh_list(make_config())
    runner.fetch_body(make_config(), make_summary(9))

    early = drain_until(runner, 3)
    release_slow.set()
    late = drain_until(runner, 1)

    assert [result.kind for result in early] == [TaskKind.NOTICE, TaskKind.NOTICE, TaskKind.BODY]
    assert [result.kind for result in late] == [TaskKind.LIST]


def test_workers_get_a_private_copy_of_the_config() -> None:
    seen = []
    started = threading.Event()
    release = threading.Event()

    def list_fn(imap, limit):
        started.set()
        release.wait(5)
        seen.append(imap.host)
        return []

    config = make_config()
    runner = BackgroundRunner(list_fn=list_fn)
    runner.refresh_list(config)
    started.wait(5)
    config.imap.host = "mutated.example.test"
    release.set()

    drain_until(runner, 2)

    assert seen == ["imap.example.test"]


def test_connection_errors_are_reported() -> None:
    def list_fn(imap, limit):
        raise MailConnectionError("cannot connect to imap.example.test:1143: refused")

    runner = BackgroundRunner(list_fn=list_fn)
    runner.refresh_list(make_config())

    results = drain_until(runner, 2)

    assert results[1] == TaskResult(
        kind=TaskKind.LIST,
        ok=False,
        error="cannot connect to imap.example.test:1143: refused",
    )


def test_wait_joins_running_tasks() -> None:
    finished = []

    def slow_send(smtp, user, to, subject, body):
        time.sleep(0.2)
        finished.append(to)

    runner = BackgroundRunner(send_fn=slow_send)
    runner.send(make_config(), "jane@x.com", "Hi", "Body")

    assert runner.wait() == 1
    assert finished == ["jane@x.com"]
    assert runner.wait() == 0


def test_scheduled_send_finishes_when_the_process_exits(tmp_path) -> None:
    marker = tmp_path / "sent"
    script = textwrap.dedent(
        f"""
        import time

        from tests.helpers import make_config
        from zen_tasks import BackgroundRunner

        def slow_send(smtp, user, to, subject, body):
            time.sleep(0.5)
            open({str(marker)!r}, "w").close()

        BackgroundRunner(send_fn=slow_send).send(make_config(), "jane@x.com", "Hi", "Body")
        """
    )
    root = Path(__file__).resolve().parent.parent

    subprocess.run([sys.executable, "-c", script], cwd=root, check=True, timeout=30)

    assert marker.exists()
