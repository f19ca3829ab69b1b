import curses
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from zen_config import Config, ConfigError, PersistError, load_config, save_config
from zen_log import DebugLogger
from zen_state import (
    COMPOSE_FIELD_RING,
    CONFIG_FIELD_RING,
    LOADING_PLACEHOLDER,
    PORT_FIELDS,
    TOGGLE_FIELDS,
    AppState,
    ComposeDraft,
    ComposeField,
    ConfigDraft,
    OpenMessage,
    ValidationError,
    View,
    compose_full_body,
    extract_reply_to,
    make_reply_quote,
    make_reply_subject,
    ring_step,
)
from zen_tasks import BackgroundRunner, TaskKind, TaskResult


ENTER = "Enter"
ESC = "Esc"
TAB = "Tab"
BACKTAB = "BackTab"
BACKSPACE = "Backspace"
UP = "Up"
DOWN = "Down"
RESIZE = "Resize"

_CURSES_KEYS: Dict[int, str] = {
    curses.KEY_UP: UP,
    curses.KEY_DOWN: DOWN,
    curses.KEY_ENTER: ENTER,
    curses.KEY_BACKSPACE: BACKSPACE,
    getattr(curses, "KEY_BTAB", 353): BACKTAB,
    curses.KEY_RESIZE: RESIZE,
}

_CONTROL_CHARS: Dict[str, str] = {
    "\n": ENTER,
    "\r": ENTER,
    "\t": TAB,
    "\x1b": ESC,
    "\x7f": BACKSPACE,
    "\x08": BACKSPACE,
}


class EditorError(RuntimeError):
    pass


@dataclass(frozen=True)
class Key:
    """A key press: a single character or one of the named keys above."""

    code: str
    ctrl: bool = False
    shift: bool = False

    def is_char(self, char: str) -> bool:
        return self.code == char and not self.ctrl

    def is_ctrl(self, char: str) -> bool:
        return self.ctrl and self.code == char

    def printable(self) -> bool:
        return not self.ctrl and len(self.code) == 1 and self.code.isprintable()


def key_from_curses(ch: Union[int, str]) -> Optional[Key]:
    if isinstance(ch, int):
        name = _CURSES_KEYS.get(ch)
        return Key(name) if name else None
    if ch in _CONTROL_CHARS:
        return Key(_CONTROL_CHARS[ch])
    if len(ch) == 1 and ord(ch) < 32:
        # Ctrl+A .. Ctrl+Z arrive as 0x01 .. 0x1a
        return Key(chr(ord(ch) + 96), ctrl=True)
    return Key(ch)


class Controller:
    def __init__(
        self,
        state: AppState,
        runner: BackgroundRunner,
        logger: Optional[DebugLogger] = None,
        editor: Optional[Callable[[str], None]] = None,
        save: Callable[[Config, str], None] = save_config,
        load: Callable[[str], Config] = load_config,
    ) -> None:
        self.state = state
        self.runner = runner
        self.logger = logger
        self.editor = editor
        self.save = save
        self.load = load
        self._view_handlers = {
            View.LIST: self._handle_list_key,
            View.MESSAGE_DETAIL: self._handle_message_key,
            View.COMPOSE: self._handle_compose_key,
            View.CONFIG_EDIT: self._handle_config_key,
        }
        self._result_handlers = {
            TaskKind.NOTICE: self._apply_notice,
            TaskKind.LIST: self._apply_list,
            TaskKind.BODY: self._apply_body,
            TaskKind.SEND: self._apply_send,
        }

    def _log(self, category: str, message: str) -> None:
        if self.logger:
            self.logger.log(category, message)

    def _use_config(self, config: Config) -> None:
        self.state.config = config
        if self.logger:
            self.logger.mask(config.secrets())

    def dispatch(self, key: Key) -> None:
        state = self.state
        self._log("KEY", f"view={state.view.value} key={key.code} ctrl={key.ctrl}")
        if key.code == RESIZE:
            return

        if state.view is not View.CONFIG_EDIT:
            if key.is_char("q"):
                self._log("BOOT", "exit requested")
                state.running = False
                return
            if key.is_char("g"):
                self._open_config()
                return

        self._view_handlers[state.view](key)

    def apply_result(self, result: TaskResult) -> None:
        self._result_handlers[result.kind](result)

    def _apply_notice(self, result: TaskResult) -> None:
        self.state.status = result.text

    def _apply_list(self, result: TaskResult) -> None:
        if not result.ok:
            self.state.status = f"IMAP list error: {result.error}"
            return
        self.state.replace_messages(result.summaries)
        self.state.status = f"Loaded {len(self.state.messages)} messages"
        self._log("STATE", f"list replaced count={len(self.state.messages)} selected={self.state.selected}")

    def _apply_body(self, result: TaskResult) -> None:
        if not result.ok:
            self.state.status = f"IMAP body error: {result.error}"
            return
        # no fencing: whichever body arrives last is shown
        self.state.open_message = OpenMessage(header=result.header, body=result.body)
        self.state.status = "Mail loaded"
        self._log("STATE", f"body applied uid={result.header.uid} len={len(result.body)}")

    def _apply_send(self, result: TaskResult) -> None:
        if not result.ok:
            self.state.status = f"SMTP error: {result.error}"
            return
        self.state.status = "Sent"

    def _open_config(self) -> None:
        state = self.state
        state.return_view = state.view
        state.config_draft = ConfigDraft.from_config(state.config)
        state.view = View.CONFIG_EDIT
        state.status = "Config"
        self._log("ACTION", f"config opened return_view={state.return_view.value}")

    def _show_list(self, status: str) -> None:
        self.state.view = View.LIST
        self.state.open_message = None
        self.state.status = status

    def _start_compose(self) -> None:
        self.state.compose = ComposeDraft()
        self.state.view = View.COMPOSE
        self.state.status = "Compose"

    def _refresh_list(self) -> None:
        self.runner.refresh_list(self.state.config)

    def _handle_list_key(self, key: Key) -> None:
        state = self.state
        if key.is_char("j") or key.code == DOWN:
            state.select_next()
        elif key.is_char("k") or key.code == UP:
            state.select_previous()
        elif key.code == ENTER:
            self._open_selected()
        elif key.is_char("o"):
            self._refresh_list()
        elif key.is_char("c"):
            self._start_compose()

    def _open_selected(self) -> None:
        header = self.state.selected_message()
        if header is None:
            return
        self.state.open_message = OpenMessage(header=header, body=LOADING_PLACEHOLDER)
        self.state.view = View.MESSAGE_DETAIL
        self._log("ACTION", f"open uid={header.uid}")
        self.runner.fetch_body(self.state.config, header)

    def _handle_message_key(self, key: Key) -> None:
        opened = self.state.open_message
        if key.code == ESC:
            self._show_list("Back")
        elif key.is_char("j") or key.code == DOWN:
            if opened is not None:
                opened.scroll += 1
        elif key.is_char("k") or key.code == UP:
            if opened is not None:
                opened.scroll = max(0, opened.scroll - 1)
        elif key.is_char("c"):
            self._start_compose()
        elif key.is_char("r"):
            self._start_reply()
        elif key.is_char("o"):
            self._refresh_list()
            self.state.status = "Refreshing..."

    def _start_reply(self) -> None:
        state = self.state
        opened = state.open_message
        if opened is None:
            state.status = "No mail selected"
            return
        body = opened.body.strip()
        if not body or body == LOADING_PLACEHOLDER:
            state.status = "Mail is still loading"
            return

        header = opened.header
        state.compose = ComposeDraft(
            to=extract_reply_to(header.sender),
            subject=make_reply_subject(header.subject),
            body="",
            quote=make_reply_quote(header, opened.body),
            focus=ComposeField.BODY,
        )
        state.view = View.COMPOSE
        state.status = "Reply"
        self._log("ACTION", f"reply uid={header.uid} to={state.compose.to}")

    def _handle_compose_key(self, key: Key) -> None:
        draft = self.state.compose
        if key.is_ctrl("s"):
            self._send_compose()
        elif key.code == ESC:
            self.state.compose = ComposeDraft()
            self._show_list("Compose canceled")
        elif key.code == TAB:
            draft.focus = ring_step(COMPOSE_FIELD_RING, draft.focus, 1)
        elif key.code == BACKSPACE:
            draft.set_focused_text(draft.focused_text()[:-1])
        elif key.code == ENTER:
            if draft.focus is ComposeField.BODY:
                draft.body += "\n"
            else:
                draft.focus = ring_step(COMPOSE_FIELD_RING, draft.focus, 1)
        elif key.printable():
            draft.set_focused_text(draft.focused_text() + key.code)

    def validate_compose(self) -> None:
        draft = self.state.compose
        if not draft.to.strip():
            raise ValidationError("To is empty")
        if not draft.subject.strip():
            raise ValidationError("Subject is empty")

    def _send_compose(self) -> None:
        try:
            self.validate_compose()
        except ValidationError as err:
            self.state.status = str(err)
            self._log("WARN", f"send blocked: {err}")
            return

        draft = self.state.compose
        self.runner.send(self.state.config, draft.to.strip(), draft.subject, compose_full_body(draft))

    def _handle_config_key(self, key: Key) -> None:
        draft = self.state.config_draft
        focus = draft.focus
        if key.is_ctrl("s"):
            self._save_config()
        elif key.code == ESC:
            self.state.view = self.state.return_view
            self.state.status = "Back"
        elif key.code == BACKTAB or (key.code == TAB and key.shift):
            draft.focus = ring_step(CONFIG_FIELD_RING, focus, -1)
        elif key.code == TAB:
            draft.focus = ring_step(CONFIG_FIELD_RING, focus, 1)
        elif key.is_char("e"):
            self._edit_config_file()
        elif key.is_char(" "):
            if focus in TOGGLE_FIELDS:
                draft.set_value(focus, not draft.value(focus))
        elif key.code == BACKSPACE:
            if focus not in TOGGLE_FIELDS:
                draft.set_value(focus, draft.value(focus)[:-1])
        elif key.printable():
            if focus in TOGGLE_FIELDS:
                return
            if focus in PORT_FIELDS and key.code not in "0123456789":
                return
            draft.set_value(focus, draft.value(focus) + key.code)

    def _save_config(self) -> None:
        state = self.state
        try:
            config = state.config_draft.to_config()
        except ValidationError as err:
            state.status = f"Config invalid: {err}"
            self._log("WARN", f"config save blocked: {err}")
            return

        try:
            self.save(config, state.config_path)
        except PersistError as err:
            state.status = f"Save error: {err}"
            self._log("ERR", f"config save failed: {err}")
            return

        self._use_config(config)
        state.view = state.return_view
        state.status = "Saved config.toml"
        self._log("ACTION", f"config saved path={state.config_path}")
        self._refresh_list()

    def _edit_config_file(self) -> None:
        state = self.state
        if self.editor is None:
            state.status = "Editor error: no editor available"
            return
        try:
            self.editor(state.config_path)
        except EditorError as err:
            state.status = f"Editor error: {err}"
            self._log("ERR", f"editor failed: {err}")
            return

        try:
            config = self.load(state.config_path)
        except ConfigError as err:
            state.status = f"Reload failed: {err}"
            self._log("ERR", f"config reload failed: {err}")
            return

        self._use_config(config)
        state.config_draft = ConfigDraft.from_config(config)
        state.status = "Reloaded config"
        self._log("ACTION", f"config reloaded path={state.config_path}")
        self._refresh_list()
