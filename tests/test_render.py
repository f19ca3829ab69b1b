from __future__ import annotations

import copy

from tests.helpers import make_state, make_summary
from zen_render import EMPTY_LIST, MASK, Renderer
from zen_state import ComposeDraft, ComposeField, ConfigField, OpenMessage, View


class FakeScreen:
    def __init__(self, height: int = 24, width: int = 80) -> None:
        self.height = height
        self.width = width
        self.rows: dict[int, str] = {}
        self.refreshed = False

    def erase(self) -> None:
        self.rows = {}

    def getmaxyx(self):
        return self.height, self.width

    def addstr(self, y: int, x: int, text: str, attr: int = 0) -> None:
        line = self.rows.get(y, "")
        line = line.ljust(x)
        self.rows[y] = line[:x] + text + line[x + len(text) :]

    def refresh(self) -> None:
        self.refreshed = True

    def text(self) -> str:
        return "\n".join(self.rows[y] for y in sorted(self.rows))


def render(state, **screen_kwargs) -> FakeScreen:
    screen = FakeScreen(**screen_kwargs)
    Renderer().draw(screen, state)
    return screen


def test_empty_list_shows_placeholder_and_status() -> None:
    state = make_state()
    state.status = "Starting..."

    screen = render(state)

    assert EMPTY_LIST in screen.text()
    assert screen.rows[22] == "Starting..."
    assert screen.refreshed is True


def test_list_marks_selected_message() -> None:
    state = make_state(messages=[make_summary(1, subject="First"), make_summary(2, subject="Second")])
    state.selected = 1

    screen = render(state)

    assert "> Second" in screen.text()
    assert "  First" in screen.text()


def test_list_keeps_selection_visible() -> None:
    state = make_state(messages=[make_summary(uid, subject=f"Subject {uid}") for uid in range(40)])
    state.selected = 39

    screen = render(state, height=10)

    assert "> Subject 39" in screen.text()
    assert "Subject 0" not in screen.text()


def test_message_scroll_is_clamped_when_drawn() -> None:
    state = make_state(view=View.MESSAGE_DETAIL)
    body = "\n".join(f"line {i}" for i in range(30))
    state.open_message = OpenMessage(header=make_summary(7, subject="Long"), body=body, scroll=500)

    screen = render(state, height=20)

    assert "Subject Long" in screen.text()
    assert "UID     7" in screen.text()
    assert "line 29" in screen.text()
    assert state.open_message.scroll == 500


def test_compose_draws_quote_below_body() -> None:
    state = make_state(view=View.COMPOSE)
    state.compose = ComposeDraft(
        to="jane@x.com",
        subject="Re: Plans",
        body="Sure.",
        quote="On Tue, Jane wrote:\n> hi",
        focus=ComposeField.BODY,
    )

    screen = render(state)
    lines = screen.text().splitlines()

    assert lines.index("Sure.") < lines.index("> hi")
    assert any(line.startswith("To:") and "jane@x.com" in line for line in lines)


def test_config_masks_passwords_and_marks_focus() -> None:
    state = make_state(view=View.CONFIG_EDIT)
    state.config_draft.focus = ConfigField.SMTP_PORT

    text = render(state).text()

    assert "imap-secret" not in text
    assert "smtp-secret" not in text
    assert f"password   {MASK}" in text
    assert "> port       1025" in text
    assert "starttls   true" in text


def test_draw_does_not_mutate_state() -> None:
    state = make_state(messages=[make_summary(uid) for uid in range(5)], view=View.MESSAGE_DETAIL)
    state.selected = 4
    state.open_message = OpenMessage(header=make_summary(4), body="x\n" * 100, scroll=1000)
    before = copy.deepcopy(state)

    for view in View:
        state.view = view
        render(state, height=8, width=30)
        before.view = view

    assert state == before


def test_tiny_terminal_is_reported() -> None:
    assert "too small" in render(make_state(), height=3, width=40).text()
