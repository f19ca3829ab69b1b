import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from zen_config import Config, MailServerConfig, UserConfig
from zen_gateway import MessageSummary


LOADING_PLACEHOLDER = "Loading..."
_PORT_RE = re.compile(r"[0-9]+")


class ValidationError(ValueError):
    pass


class View(Enum):
    LIST = "list"
    MESSAGE_DETAIL = "message"
    COMPOSE = "compose"
    CONFIG_EDIT = "config"


class ComposeField(Enum):
    TO = "to"
    SUBJECT = "subject"
    BODY = "body"


COMPOSE_FIELD_RING: List[ComposeField] = [
    ComposeField.TO,
    ComposeField.SUBJECT,
    ComposeField.BODY,
]


class ConfigField(Enum):
    # values are the ConfigDraft attribute names
    IMAP_HOST = "imap_host"
    IMAP_PORT = "imap_port"
    IMAP_USER = "imap_user"
    IMAP_PASS = "imap_pass"
    IMAP_STARTTLS = "imap_starttls"
    SMTP_HOST = "smtp_host"
    SMTP_PORT = "smtp_port"
    SMTP_USER = "smtp_user"
    SMTP_PASS = "smtp_pass"
    SMTP_STARTTLS = "smtp_starttls"
    USER_NAME = "user_name"
    USER_EMAIL = "user_email"


CONFIG_FIELD_RING: List[ConfigField] = [
    ConfigField.IMAP_HOST,
    ConfigField.IMAP_PORT,
    ConfigField.IMAP_USER,
    ConfigField.IMAP_PASS,
    ConfigField.IMAP_STARTTLS,
    ConfigField.SMTP_HOST,
    ConfigField.SMTP_PORT,
    ConfigField.SMTP_USER,
    ConfigField.SMTP_PASS,
    ConfigField.SMTP_STARTTLS,
    ConfigField.USER_NAME,
    ConfigField.USER_EMAIL,
]

PORT_FIELDS = frozenset({ConfigField.IMAP_PORT, ConfigField.SMTP_PORT})
TOGGLE_FIELDS = frozenset({ConfigField.IMAP_STARTTLS, ConfigField.SMTP_STARTTLS})
PASSWORD_FIELDS = frozenset({ConfigField.IMAP_PASS, ConfigField.SMTP_PASS})


def ring_step(ring: Sequence, current, step: int):
    return ring[(ring.index(current) + step) % len(ring)]


@dataclass
class ComposeDraft:
    to: str = ""
    subject: str = ""
    body: str = ""
    quote: str = ""
    focus: ComposeField = ComposeField.TO

    def focused_text(self) -> str:
        return getattr(self, self.focus.value)

    def set_focused_text(self, text: str) -> None:
        setattr(self, self.focus.value, text)


@dataclass
class ConfigDraft:
    imap_host: str = ""
    imap_port: str = ""
    imap_user: str = ""
    imap_pass: str = ""
    imap_starttls: bool = True
    smtp_host: str = ""
    smtp_port: str = ""
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_starttls: bool = True
    user_name: str = ""
    user_email: str = ""
    focus: ConfigField = ConfigField.IMAP_HOST

    @classmethod
    def from_config(cls, config: Config) -> "ConfigDraft":
        return cls(
            imap_host=config.imap.host,
            imap_port=str(config.imap.port),
            imap_user=config.imap.username,
            imap_pass=config.imap.password,
            imap_starttls=config.imap.starttls,
            smtp_host=config.smtp.host,
            smtp_port=str(config.smtp.port),
            smtp_user=config.smtp.username,
            smtp_pass=config.smtp.password,
            smtp_starttls=config.smtp.starttls,
            user_name=config.user.name,
            user_email=config.user.email,
        )

    def value(self, config_field: ConfigField):
        return getattr(self, config_field.value)

    def set_value(self, config_field: ConfigField, value) -> None:
        setattr(self, config_field.value, value)

    def to_config(self) -> Config:
        """Build a fresh ``Config`` from the draft, raising ``ValidationError``
        when a port is not an unsigned 16-bit integer."""
        imap_port = parse_port(self.imap_port, "IMAP")
        smtp_port = parse_port(self.smtp_port, "SMTP")
        return Config(
            imap=MailServerConfig(
                host=self.imap_host,
                port=imap_port,
                username=self.imap_user,
                password=self.imap_pass,
                starttls=self.imap_starttls,
            ),
            smtp=MailServerConfig(
                host=self.smtp_host,
                port=smtp_port,
                username=self.smtp_user,
                password=self.smtp_pass,
                starttls=self.smtp_starttls,
            ),
            user=UserConfig(name=self.user_name, email=self.user_email),
        )


def parse_port(text: str, label: str) -> int:
    if not _PORT_RE.fullmatch(text):
        raise ValidationError(f"{label} port must be a number, got {text!r}")
    port = int(text)
    if port > 65535:
        raise ValidationError(f"{label} port {port} is out of range (0-65535)")
    return port


@dataclass
class OpenMessage:
    header: MessageSummary
    body: str
    scroll: int = 0


@dataclass
class AppState:
    config: Config
    config_path: str
    view: View = View.LIST
    return_view: View = View.LIST
    messages: List[MessageSummary] = field(default_factory=list)
    selected: int = 0
    open_message: Optional[OpenMessage] = None
    compose: ComposeDraft = field(default_factory=ComposeDraft)
    config_draft: Optional[ConfigDraft] = None
    status: str = ""
    running: bool = True

    def __post_init__(self) -> None:
        if self.config_draft is None:
            self.config_draft = ConfigDraft.from_config(self.config)

    def selected_message(self) -> Optional[MessageSummary]:
        if not self.messages:
            return None
        return self.messages[self.selected]

    def select_next(self) -> None:
        if self.messages:
            self.selected = min(self.selected + 1, len(self.messages) - 1)

    def select_previous(self) -> None:
        self.selected = max(0, self.selected - 1)

    def replace_messages(self, summaries: Sequence[MessageSummary]) -> None:
        self.messages = list(summaries)
        if not self.messages:
            self.selected = 0
        else:
            self.selected = min(self.selected, len(self.messages) - 1)


def extract_reply_to(sender: str) -> str:
    text = sender.strip()

    left = text.find("<")
    if left != -1:
        right = text.find(">", left + 1)
        if right != -1:
            addr = text[left + 1 : right].strip()
            if addr:
                return addr

    for token in text.split():
        candidate = token.strip("<>,;")
        if "@" in candidate:
            return candidate

    return text


def make_reply_subject(subject: str) -> str:
    text = subject.strip()
    if text.lower().startswith("re:"):
        text = text[3:].lstrip()
    return f"Re: {text}"


def quote_lines(text: str) -> str:
    lines = text.replace("\r\n", "\n").split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    if not lines:
        return "> "
    return "\n".join(f"> {line}" for line in lines)


def make_reply_quote(header: MessageSummary, body: str) -> str:
    sender = header.sender or "(unknown)"
    date = header.date or "(unknown date)"
    return f"On {date}, {sender} wrote:\n{quote_lines(body)}"


def compose_full_body(draft: ComposeDraft) -> str:
    body = draft.body.rstrip()
    quote = draft.quote.rstrip()
    if not quote:
        return body
    if not body:
        return quote
    return f"{body}\n\n{quote}"
