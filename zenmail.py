#!/usr/bin/env python3

import argparse
import contextlib
import curses
import locale
import os
import shlex
import subprocess
import sys
from typing import Iterator, List, Optional, Tuple, Union

from zen_config import ConfigError, config_path, load_or_create
from zen_controller import RESIZE, Controller, EditorError, Key, key_from_curses
from zen_log import DebugLogger
from zen_render import Renderer
from zen_state import AppState, View
from zen_tasks import DEFAULT_LIST_LIMIT, BackgroundRunner


POLL_MS = 50
DEFAULT_EDITOR = "nano"
CREATED_STATUS = "config.toml created. Fill your credentials and press Ctrl+S to save."


class TerminalGuard:
    """Owns curses mode (alternate screen, raw input, hidden cursor).

    Leaving the ``with`` block always restores the terminal, including when
    an exception escapes while the screen is suspended for the editor.
    """

    def __init__(self, logger: Optional[DebugLogger] = None) -> None:
        self.logger = logger
        self.stdscr = None
        self.active = False

    def __enter__(self) -> "TerminalGuard":
        self.stdscr = curses.initscr()
        self.active = True
        try:
            self._acquire()
        except BaseException:
            self._restore()
            raise
        self._log("BOOT", "terminal acquired")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._restore()
        return False

    def _log(self, category: str, message: str) -> None:
        if self.logger:
            self.logger.log(category, message)

    def _acquire(self) -> None:
        curses.noecho()
        curses.raw()
        self.stdscr.keypad(True)
        try:
            curses.curs_set(0)
        except curses.error:
            pass

    def _restore(self) -> None:
        if not self.active:
            return
        self.active = False
        try:
            if self.stdscr is not None:
                self.stdscr.keypad(False)
            curses.noraw()
            curses.echo()
            curses.curs_set(1)
        except curses.error:
            pass
        try:
            curses.endwin()
        except curses.error:
            pass
        self._log("BOOT", "terminal restored")

    @contextlib.contextmanager
    def suspended(self) -> Iterator[None]:
        curses.def_prog_mode()
        self._restore()
        try:
            yield
        finally:
            curses.reset_prog_mode()
            self.active = True
            self._acquire()
            # keys typed while the editor ran belong to the editor
            curses.flushinp()
            self.stdscr.clear()
            self.stdscr.refresh()


def editor_command(path: str) -> Tuple[Union[str, List[str]], bool]:
    editor = os.environ.get("EDITOR", "").strip() or DEFAULT_EDITOR
    if len(editor.split()) > 1:
        return f"{editor} {shlex.quote(path)}", True
    return [editor, path], False


def open_in_editor(path: str, guard: TerminalGuard, logger: Optional[DebugLogger] = None) -> None:
    cmd, use_shell = editor_command(path)
    if logger:
        logger.log("CMD", f"editor cmd={cmd} shell={use_shell}")
    with guard.suspended():
        try:
            proc = subprocess.run(cmd, shell=use_shell, check=False)
        except OSError as err:
            raise EditorError(f"cannot run editor: {err}") from err
    if proc.returncode != 0:
        raise EditorError(f"editor exited with status {proc.returncode}")


def read_key(stdscr) -> Optional[Key]:
    try:
        ch = stdscr.get_wch()
    except curses.error:
        return None
    return key_from_curses(ch)


class ZenMailApp:
    def __init__(
        self,
        state: AppState,
        runner: BackgroundRunner,
        logger: Optional[DebugLogger] = None,
        refresh_on_start: bool = True,
    ) -> None:
        self.state = state
        self.runner = runner
        self.logger = logger
        self.refresh_on_start = refresh_on_start
        self.renderer = Renderer()

    def _log(self, category: str, message: str) -> None:
        if self.logger:
            self.logger.log(category, message)

    def run(self, guard: TerminalGuard) -> None:
        stdscr = guard.stdscr
        stdscr.timeout(POLL_MS)
        controller = Controller(
            self.state,
            self.runner,
            logger=self.logger,
            editor=lambda path: open_in_editor(path, guard, self.logger),
        )
        self._log("BOOT", f"loop started view={self.state.view.value}")
        if self.refresh_on_start:
            self.runner.refresh_list(self.state.config)

        while self.state.running:
            for result in self.runner.drain():
                controller.apply_result(result)
            self.renderer.draw(stdscr, self.state)

            key = read_key(stdscr)
            if key is None:
                continue
            if key.code == RESIZE:
                stdscr.clear()
                continue
            controller.dispatch(key)

        self._log("BOOT", "loop finished")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Terminal IMAP/SMTP mail client.")
    parser.add_argument(
        "--config",
        default="",
        help="Path to config.toml (default: $XDG_CONFIG_HOME/zenmail/config.toml)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_LIST_LIMIT,
        help=f"Number of recent messages to list (default: {DEFAULT_LIST_LIMIT})",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging for all actions.",
    )
    parser.add_argument(
        "--debug-log",
        default="logs/zenmail.debug.log",
        help="Log file used with --debug (default: logs/zenmail.debug.log)",
    )
    return parser.parse_args()


def main() -> int:
    locale.setlocale(locale.LC_ALL, "")
    args = parse_args()
    logger = DebugLogger(args.debug_log if args.debug else None)

    try:
        path = args.config.strip() or config_path()
        config, created = load_or_create(path)
    except ConfigError as err:
        logger.log("ERR", f"fatal config error err={err}")
        print(f"Error: {err}", file=sys.stderr)
        return 1

    logger.mask(config.secrets())
    logger.log("BOOT", f"startup config={path} created={created} limit={max(1, args.limit)}")
    state = AppState(
        config=config,
        config_path=path,
        view=View.CONFIG_EDIT if created else View.LIST,
        status=CREATED_STATUS if created else "Starting...",
    )
    runner = BackgroundRunner(logger=logger, limit=args.limit)
    app = ZenMailApp(state, runner, logger=logger, refresh_on_start=not created)

    # short Esc delay so Esc reacts immediately
    os.environ.setdefault("ESCDELAY", "25")
    try:
        with TerminalGuard(logger) as guard:
            app.run(guard)
    except KeyboardInterrupt:
        logger.log("BOOT", "keyboard interrupt")
        return 130
    except curses.error as err:
        logger.log("ERR", f"fatal terminal error err={err}")
        print(f"Error: terminal setup failed: {err}", file=sys.stderr)
        return 1
    finally:
        # scheduled tasks run to completion after the terminal is restored
        pending = runner.wait()
        if pending:
            logger.log("BOOT", f"waited for {pending} background tasks")
    logger.log("BOOT", "shutdown ok")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
