import imaplib
import re
import smtplib
import ssl
from dataclasses import dataclass
from email import policy
from email.message import EmailMessage, Message
from email.parser import BytesParser
from email.utils import formataddr, formatdate, make_msgid, parseaddr
from typing import List, Optional

from zen_config import MailServerConfig, UserConfig


TIMEOUT_SECONDS = 30
MAILBOX = "INBOX"
_UID_RE = re.compile(rb"UID (\d+)")
_HEADER_QUERY = "(UID BODY.PEEK[HEADER.FIELDS (FROM DATE SUBJECT)])"


class MailError(RuntimeError):
    pass


class MailConnectionError(MailError):
    pass


class MailAuthError(MailError):
    pass


class MailProtocolError(MailError):
    pass


@dataclass(frozen=True)
class MessageSummary:
    uid: int
    sender: str
    date: str
    subject: str


def is_localhost(host: str) -> bool:
    return host in ("127.0.0.1", "localhost")


def tls_context(host: str) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if is_localhost(host):
        # local bridges ship self-signed certificates
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _safe_logout(conn: imaplib.IMAP4) -> None:
    try:
        conn.logout()
    except (imaplib.IMAP4.error, OSError):
        pass


def _imap_connect(config: MailServerConfig) -> imaplib.IMAP4:
    context = tls_context(config.host)
    try:
        if config.starttls:
            conn = imaplib.IMAP4(config.host, config.port, timeout=TIMEOUT_SECONDS)
            try:
                conn.starttls(ssl_context=context)
            except (imaplib.IMAP4.error, OSError):
                _safe_logout(conn)
                raise
        else:
            conn = imaplib.IMAP4_SSL(
                config.host,
                config.port,
                ssl_context=context,
                timeout=TIMEOUT_SECONDS,
            )
    except imaplib.IMAP4.error as err:
        raise MailConnectionError(f"STARTTLS failed for {config.host}:{config.port}: {err}") from err
    except OSError as err:
        raise MailConnectionError(f"cannot connect to {config.host}:{config.port}: {err}") from err

    try:
        conn.login(config.username, config.password)
    except imaplib.IMAP4.abort as err:
        _safe_logout(conn)
        raise MailConnectionError(f"connection lost during login: {err}") from err
    except imaplib.IMAP4.error as err:
        _safe_logout(conn)
        raise MailAuthError(f"login rejected for {config.username}: {err}") from err
    except OSError as err:
        _safe_logout(conn)
        raise MailConnectionError(f"connection lost during login: {err}") from err
    return conn


def _check(typ: str, data: list, what: str) -> list:
    if typ != "OK":
        detail = b" ".join(part for part in data if isinstance(part, bytes)).decode("utf-8", "replace")
        raise MailProtocolError(f"{what} failed: {typ} {detail}".strip())
    return data


def _format_sender(raw: str) -> str:
    name, addr = parseaddr(raw)
    name = name.strip()
    if addr and "@" in addr:
        if name:
            return f"{name} <{addr}>"
        return f"<{addr}>"
    return raw.strip()


def _summary_from_headers(uid: int, raw_headers: bytes) -> MessageSummary:
    msg = BytesParser(policy=policy.default).parsebytes(raw_headers, headersonly=True)
    return MessageSummary(
        uid=uid,
        sender=_format_sender(str(msg.get("From", "") or "")),
        date=str(msg.get("Date", "") or "").strip(),
        subject=str(msg.get("Subject", "") or "").strip(),
    )


def _parse_summaries(data: list) -> List[MessageSummary]:
    summaries: List[MessageSummary] = []
    for item in data:
        if not isinstance(item, tuple) or len(item) < 2:
            continue
        meta, raw_headers = item[0], item[1]
        match = _UID_RE.search(meta or b"")
        if not match:
            raise MailProtocolError(f"fetch response without UID: {meta!r}")
        summaries.append(_summary_from_headers(int(match.group(1)), raw_headers or b""))
    summaries.sort(key=lambda summary: summary.uid)
    return summaries


def list_summaries(config: MailServerConfig, limit: int) -> List[MessageSummary]:
    """Return the ``limit`` most recent summaries of the inbox, oldest first."""
    conn = _imap_connect(config)
    try:
        _check(*conn.select(MAILBOX, readonly=True), what=f"SELECT {MAILBOX}")
        data = _check(*conn.uid("SEARCH", None, "ALL"), what="UID SEARCH")
        uids = sorted(int(token) for token in b" ".join(data).split() if token.isdigit())
        if not uids or limit <= 0:
            return []
        picked = uids[-limit:]
        uid_set = ",".join(str(uid) for uid in picked)
        data = _check(*conn.uid("FETCH", uid_set, _HEADER_QUERY), what="UID FETCH")
        return _parse_summaries(data)
    except imaplib.IMAP4.abort as err:
        raise MailConnectionError(f"connection lost: {err}") from err
    except imaplib.IMAP4.error as err:
        raise MailProtocolError(str(err)) from err
    except OSError as err:
        raise MailConnectionError(str(err)) from err
    finally:
        _safe_logout(conn)


def extract_text_plain(part: Message) -> str:
    """Concatenate the text/plain leaves of ``part``, separated by blank lines."""
    if part.is_multipart():
        chunks: List[str] = []
        for sub in part.get_payload():
            text = extract_text_plain(sub)
            if text.strip():
                chunks.append(text)
        return "\n\n".join(chunks)

    if part.get_content_type() != "text/plain":
        return ""
    try:
        return part.get_content()
    except (AttributeError, LookupError, ValueError):
        payload = part.get_payload(decode=True) or b""
        try:
            return payload.decode(part.get_content_charset() or "utf-8", errors="replace")
        except LookupError:
            # unknown charset label
            return payload.decode("utf-8", errors="replace")


def fetch_body(config: MailServerConfig, uid: int) -> str:
    conn = _imap_connect(config)
    try:
        _check(*conn.select(MAILBOX, readonly=True), what=f"SELECT {MAILBOX}")
        data = _check(*conn.uid("FETCH", str(uid), "(BODY.PEEK[])"), what="UID FETCH")
    except imaplib.IMAP4.abort as err:
        raise MailConnectionError(f"connection lost: {err}") from err
    except imaplib.IMAP4.error as err:
        raise MailProtocolError(str(err)) from err
    except OSError as err:
        raise MailConnectionError(str(err)) from err
    finally:
        _safe_logout(conn)

    raw: Optional[bytes] = None
    for item in data:
        if isinstance(item, tuple) and len(item) >= 2:
            raw = item[1]
            break
    if raw is None:
        raise MailProtocolError(f"no body returned for uid={uid}")

    msg = BytesParser(policy=policy.default).parsebytes(raw)
    return extract_text_plain(msg)


def build_message(user: UserConfig, to: str, subject: str, body: str) -> EmailMessage:
    _, addr = parseaddr(to)
    if "@" not in addr:
        raise MailError(f"invalid recipient address: {to}")
    if "@" not in user.email:
        raise MailError(f"invalid sender address: {user.email}")

    msg = EmailMessage()
    msg["From"] = formataddr((user.name, user.email)) if user.name.strip() else user.email
    msg["To"] = to.strip()
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg.set_content(body)
    return msg


def _smtp_connect(config: MailServerConfig) -> smtplib.SMTP:
    context = tls_context(config.host)
    if config.starttls:
        server = smtplib.SMTP(config.host, config.port, timeout=TIMEOUT_SECONDS)
        try:
            server.ehlo()
            server.starttls(context=context)
            server.ehlo()
        except (smtplib.SMTPException, OSError):
            server.close()
            raise
    else:
        server = smtplib.SMTP_SSL(config.host, config.port, timeout=TIMEOUT_SECONDS, context=context)
        server.ehlo()
    return server


def send(config: MailServerConfig, user: UserConfig, to: str, subject: str, body: str) -> None:
    msg = build_message(user, to, subject, body)
    server = None
    try:
        server = _smtp_connect(config)
        if config.username:
            server.login(config.username, config.password)
        server.send_message(msg)
    except smtplib.SMTPAuthenticationError as err:
        raise MailAuthError(f"login rejected for {config.username}: {err}") from err
    except (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected) as err:
        raise MailConnectionError(str(err)) from err
    except smtplib.SMTPException as err:
        raise MailProtocolError(str(err)) from err
    except OSError as err:
        raise MailConnectionError(f"cannot connect to {config.host}:{config.port}: {err}") from err
    finally:
        if server is not None:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError):
                server.close()
