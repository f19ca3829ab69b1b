import curses
from typing import List, Tuple

from zen_state import (
    CONFIG_FIELD_RING,
    PASSWORD_FIELDS,
    TOGGLE_FIELDS,
    AppState,
    ComposeField,
    ConfigField,
    View,
)


LIST_HELP = "j/k or Up/Down move | Enter open | o refresh | c compose | g config | q quit"
MESSAGE_HELP = "j/k or Up/Down scroll | Esc back | r reply | c compose | o refresh | g config | q quit"
COMPOSE_HELP = "Tab next field | Enter newline/next | Ctrl+S send | Esc cancel | g config | q quit"
CONFIG_HELP = "Tab/Shift+Tab navigate | Space toggle | Ctrl+S save | e editor | Esc back"
EMPTY_LIST = "Loading... (press o to refresh)"
MASK = "********"

_CONFIG_LABELS = {
    ConfigField.IMAP_HOST: "host",
    ConfigField.IMAP_PORT: "port",
    ConfigField.IMAP_USER: "username",
    ConfigField.IMAP_PASS: "password",
    ConfigField.IMAP_STARTTLS: "starttls",
    ConfigField.SMTP_HOST: "host",
    ConfigField.SMTP_PORT: "port",
    ConfigField.SMTP_USER: "username",
    ConfigField.SMTP_PASS: "password",
    ConfigField.SMTP_STARTTLS: "starttls",
    ConfigField.USER_NAME: "name",
    ConfigField.USER_EMAIL: "email",
}

_CONFIG_SECTIONS = {
    ConfigField.IMAP_HOST: "IMAP",
    ConfigField.SMTP_HOST: "SMTP",
    ConfigField.USER_NAME: "USER",
}


class Renderer:
    """Draws the application state. Never writes to the state it is given;
    the only thing it remembers between frames is the list viewport."""

    def __init__(self) -> None:
        self.list_offset = 0

    def draw(self, stdscr, state: AppState) -> None:
        stdscr.erase()
        height, width = stdscr.getmaxyx()
        if height < 4 or width < 20:
            self._safe_addstr(stdscr, 0, 0, self._fit("Terminal too small.", width), curses.A_BOLD)
            stdscr.refresh()
            return

        if state.view is View.LIST:
            self._draw_list(stdscr, state, height, width)
            help_line = LIST_HELP
        elif state.view is View.MESSAGE_DETAIL:
            self._draw_message(stdscr, state, height, width)
            help_line = MESSAGE_HELP
        elif state.view is View.COMPOSE:
            self._draw_compose(stdscr, state, height, width)
            help_line = COMPOSE_HELP
        else:
            self._draw_config(stdscr, state, height, width)
            help_line = CONFIG_HELP

        self._safe_addstr(stdscr, height - 2, 0, self._fit(state.status, width), curses.A_DIM)
        self._safe_addstr(stdscr, height - 1, 0, self._fit(help_line, width), curses.A_DIM)
        stdscr.refresh()

    def _draw_list(self, stdscr, state: AppState, height: int, width: int) -> None:
        header = f"zenmail | Inbox | {len(state.messages)} messages"
        self._safe_addstr(stdscr, 0, 0, self._fit(header, width), curses.A_BOLD)

        if not state.messages:
            self.list_offset = 0
            self._safe_addstr(stdscr, 1, 0, self._fit(EMPTY_LIST, width), curses.A_DIM)
            return

        # two screen rows per message
        visible = max(1, (height - 3) // 2)
        self.list_offset = self._adjust_offset(self.list_offset, state.selected, visible)
        end = min(len(state.messages), self.list_offset + visible)

        y = 1
        for i in range(self.list_offset, end):
            summary = state.messages[i]
            selected = i == state.selected
            attr = curses.A_REVERSE if selected else curses.A_NORMAL
            marker = "> " if selected else "  "
            subject = summary.subject or "(no subject)"
            sender = summary.sender or "(unknown)"
            self._safe_addstr(stdscr, y, 0, self._fit(f"{marker}{subject}", width), attr | curses.A_BOLD)
            self._safe_addstr(stdscr, y + 1, 0, self._fit(f"    {sender}  {summary.date}", width), attr)
            y += 2

    def _draw_message(self, stdscr, state: AppState, height: int, width: int) -> None:
        opened = state.open_message
        if opened is None:
            self._safe_addstr(stdscr, 0, 0, self._fit("Loading...", width), curses.A_DIM)
            return

        header = opened.header
        header_lines = [
            f"From    {header.sender or '(unknown)'}",
            f"Date    {header.date}",
            f"Subject {header.subject or '(no subject)'}",
            f"UID     {header.uid}",
        ]
        for y, line in enumerate(header_lines):
            self._safe_addstr(stdscr, y, 0, self._fit(line, width), curses.A_BOLD)
        self._safe_addstr(stdscr, len(header_lines), 0, "-" * max(0, width - 1), curses.A_DIM)

        body_top = len(header_lines) + 1
        usable_rows = max(1, height - body_top - 2)
        lines = self._wrap(opened.body, width)
        max_scroll = max(0, len(lines) - usable_rows)
        scroll = min(opened.scroll, max_scroll)
        for i, line in enumerate(lines[scroll : scroll + usable_rows]):
            self._safe_addstr(stdscr, body_top + i, 0, line)

    def _draw_compose(self, stdscr, state: AppState, height: int, width: int) -> None:
        draft = state.compose
        title = "Reply" if draft.quote else "New Email"
        self._safe_addstr(stdscr, 0, 0, self._fit(title, width), curses.A_BOLD)

        input_x = 10
        input_w = max(1, width - input_x - 1)
        fields = [(1, "To:", draft.to, ComposeField.TO), (2, "Subject:", draft.subject, ComposeField.SUBJECT)]
        for y, label, value, compose_field in fields:
            focused = draft.focus is compose_field
            self._safe_addstr(stdscr, y, 0, label, curses.A_BOLD if focused else 0)
            visible = value[-input_w:] if focused else value
            self._safe_addstr(stdscr, y, input_x, self._fit(visible, input_w), curses.A_REVERSE if focused else 0)

        body_focused = draft.focus is ComposeField.BODY
        self._safe_addstr(stdscr, 4, 0, "Body:", curses.A_BOLD if body_focused else 0)
        body_top = 5
        body_h = max(1, height - body_top - 2)

        rows: List[Tuple[str, int]] = []
        body_attr = curses.A_REVERSE if body_focused else curses.A_NORMAL
        for line in self._wrap(draft.body, width):
            rows.append((line, body_attr))
        if body_focused:
            rows.append(("_", curses.A_BLINK))
        if draft.quote:
            rows.append(("", curses.A_NORMAL))
            for line in self._wrap(draft.quote, width):
                rows.append((line, curses.A_DIM))

        # keep the end of the editable body on screen while typing
        body_rows = len(self._wrap(draft.body, width)) + (1 if body_focused else 0)
        start = max(0, body_rows - body_h) if body_focused else 0
        for i, (line, attr) in enumerate(rows[start : start + body_h]):
            self._safe_addstr(stdscr, body_top + i, 0, self._fit(line, width), attr)

    def _draw_config(self, stdscr, state: AppState, height: int, width: int) -> None:
        draft = state.config_draft
        self._safe_addstr(stdscr, 0, 0, self._fit(f"Config | {state.config_path}", width), curses.A_BOLD)

        lines: List[Tuple[str, int]] = []
        for config_field in CONFIG_FIELD_RING:
            section = _CONFIG_SECTIONS.get(config_field)
            if section:
                if lines:
                    lines.append(("", curses.A_NORMAL))
                lines.append((section, curses.A_BOLD))
            value = draft.value(config_field)
            if config_field in TOGGLE_FIELDS:
                shown = "true" if value else "false"
            elif config_field in PASSWORD_FIELDS:
                shown = MASK if value else ""
            else:
                shown = value
            focused = draft.focus is config_field
            prefix = "> " if focused else "  "
            label = _CONFIG_LABELS[config_field]
            lines.append((f"{prefix}{label:<10} {shown}", curses.A_REVERSE if focused else curses.A_NORMAL))

        for i, (line, attr) in enumerate(lines[: max(0, height - 3)]):
            self._safe_addstr(stdscr, 1 + i, 0, self._fit(line, width), attr)

    @staticmethod
    def _adjust_offset(offset: int, cursor: int, visible: int) -> int:
        if cursor < offset:
            offset = cursor
        elif cursor >= offset + visible:
            offset = cursor - visible + 1
        return max(0, offset)

    @staticmethod
    def _wrap(text: str, width: int) -> List[str]:
        width = max(1, width - 1)
        lines: List[str] = []
        for raw in text.replace("\r\n", "\n").split("\n"):
            raw = raw.replace("\t", "    ")
            if not raw:
                lines.append("")
                continue
            for start in range(0, len(raw), width):
                lines.append(raw[start : start + width])
        return lines

    @staticmethod
    def _fit(text: str, width: int) -> str:
        if width <= 0:
            return ""
        text = text.replace("\t", "    ").replace("\n", " ")
        if len(text) <= width:
            return text
        if width <= 3:
            return text[:width]
        return text[: width - 3] + "..."

    @staticmethod
    def _safe_addstr(stdscr, y: int, x: int, text: str, attr: int = 0) -> None:
        try:
            stdscr.addstr(y, x, text, attr)
        except curses.error:
            pass
