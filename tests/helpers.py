from __future__ import annotations

import time

from zen_config import Config, MailServerConfig, UserConfig
from zen_gateway import MessageSummary
from zen_state import AppState, View


def make_config(
    *,
    imap_port: int = 1143,
    smtp_port: int = 1025,
    starttls: bool = True,
) -> Config:
    return Config(
        imap=MailServerConfig(
            host="imap.example.test",
            port=imap_port,
            username="me@example.test",
            password="imap-secret",
            starttls=starttls,
        ),
        smtp=MailServerConfig(
            host="smtp.example.test",
            port=smtp_port,
            username="me@example.test",
            password="smtp-secret",
            starttls=starttls,
        ),
        user=UserConfig(name="Me Myself", email="me@example.test"),
    )


def make_summary(
    uid: int = 1,
    *,
    sender: str = "Jane Doe <jane@example.test>",
    date: str = "Mon, 16 Feb 2026 10:00:00 -0500",
    subject: str = "Hello",
) -> MessageSummary:
    return MessageSummary(uid=uid, sender=sender, date=date, subject=subject)


def make_state(
    *,
    messages: list[MessageSummary] | None = None,
    view: View = View.LIST,
    config_path: str = "/tmp/zenmail-test/config.toml",
) -> AppState:
    return AppState(
        config=make_config(),
        config_path=config_path,
        view=view,
        messages=list(messages or []),
    )


class FakeRunner:
    """Records scheduling requests instead of starting threads."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def refresh_list(self, config: Config) -> None:
        self.calls.append(("list", config))

    def fetch_body(self, config: Config, header: MessageSummary) -> None:
        self.calls.append(("body", header))

    def send(self, config: Config, to: str, subject: str, body: str) -> None:
        self.calls.append(("send", to, subject, body))

    def kinds(self) -> list[str]:
        return [call[0] for call in self.calls]


def drain_until(runner, count: int, timeout: float = 5.0) -> list:
    results: list = []
    deadline = time.monotonic() + timeout
    while len(results) < count and time.monotonic() < deadline:
        results.extend(runner.drain())
        if len(results) < count:
            time.sleep(0.01)
    return results
