import copy
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

import zen_gateway
from zen_config import Config
from zen_gateway import MessageSummary
from zen_log import DebugLogger


DEFAULT_LIST_LIMIT = 50


class TaskKind(Enum):
    NOTICE = "notice"
    LIST = "list"
    BODY = "body"
    SEND = "send"


@dataclass(frozen=True)
class TaskResult:
    kind: TaskKind
    ok: bool = True
    summaries: Tuple[MessageSummary, ...] = ()
    header: Optional[MessageSummary] = None
    body: str = ""
    text: str = ""
    error: str = ""


class BackgroundRunner:
    """Runs mailbox operations on worker threads, one thread per request.

    Every scheduled operation delivers exactly one ``TaskResult`` to the
    shared queue, in completion order. ``drain`` never blocks, so the
    interactive loop can call it before every frame. Workers are not
    daemonic: an operation that has been scheduled is never cut short by
    the process exiting, and ``wait`` joins the ones still running.
    """

    def __init__(
        self,
        logger: Optional[DebugLogger] = None,
        limit: int = DEFAULT_LIST_LIMIT,
        list_fn: Callable = zen_gateway.list_summaries,
        body_fn: Callable = zen_gateway.fetch_body,
        send_fn: Callable = zen_gateway.send,
    ) -> None:
        self.logger = logger
        self.limit = max(1, limit)
        self.list_fn = list_fn
        self.body_fn = body_fn
        self.send_fn = send_fn
        self._results: "queue.Queue[TaskResult]" = queue.Queue()
        self._threads: List[threading.Thread] = []

    def _log(self, category: str, message: str) -> None:
        if self.logger:
            self.logger.log(category, message)

    def notice(self, text: str) -> None:
        self._results.put(TaskResult(kind=TaskKind.NOTICE, text=text))

    def drain(self) -> List[TaskResult]:
        results: List[TaskResult] = []
        while True:
            try:
                results.append(self._results.get_nowait())
            except queue.Empty:
                return results

    def refresh_list(self, config: Config) -> None:
        imap = copy.deepcopy(config.imap)
        limit = self.limit

        def work() -> TaskResult:
            summaries = self.list_fn(imap, limit)
            return TaskResult(kind=TaskKind.LIST, summaries=tuple(summaries))

        self.notice("Fetching mail list...")
        self._spawn(TaskKind.LIST, work, f"host={imap.host} limit={limit}")

    def fetch_body(self, config: Config, header: MessageSummary) -> None:
        imap = copy.deepcopy(config.imap)

        def work() -> TaskResult:
            body = self.body_fn(imap, header.uid)
            return TaskResult(kind=TaskKind.BODY, header=header, body=body)

        self.notice(f"Fetching body (uid={header.uid})...")
        self._spawn(TaskKind.BODY, work, f"uid={header.uid}")

    def send(self, config: Config, to: str, subject: str, body: str) -> None:
        smtp = copy.deepcopy(config.smtp)
        user = copy.deepcopy(config.user)

        def work() -> TaskResult:
            self.send_fn(smtp, user, to, subject, body)
            return TaskResult(kind=TaskKind.SEND)

        self.notice("Sending...")
        self._spawn(TaskKind.SEND, work, f"to={to} subject_len={len(subject)} body_len={len(body)}")

    def _spawn(self, kind: TaskKind, work: Callable[[], TaskResult], detail: str) -> None:
        self._log("TASK", f"schedule kind={kind.value} {detail}")
        thread = threading.Thread(
            target=self._run,
            args=(kind, work),
            name=f"zenmail-{kind.value}",
        )
        self._threads = [t for t in self._threads if t.is_alive()]
        self._threads.append(thread)
        thread.start()

    def wait(self, timeout: Optional[float] = None) -> int:
        """Join the workers that are still running; returns how many there were."""
        pending = [t for t in self._threads if t.is_alive()]
        if pending:
            self._log("TASK", f"waiting for {len(pending)} running tasks")
        for thread in pending:
            thread.join(timeout)
        self._threads = []
        return len(pending)

    def _run(self, kind: TaskKind, work: Callable[[], TaskResult]) -> None:
        try:
            result = work()
        except Exception as err:
            # every request yields exactly one result
            self._log("ERR", f"task failed kind={kind.value} err={err}")
            result = TaskResult(kind=kind, ok=False, error=str(err) or err.__class__.__name__)
        else:
            self._log("TASK", f"task done kind={kind.value}")
        self._results.put(result)
