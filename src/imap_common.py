"""
IMAP Common Utilities

Shared functionality for the copy, dedupe, delete-sender, clear and search scripts.
Every helper raises on a non-OK server response; callers let the error propagate.
"""

from __future__ import annotations

import imaplib
import re
import urllib.parse

# Standard IMAP flags
FLAG_SEEN = "\\Seen"
FLAG_DELETED = "\\Deleted"

# IMAP Commands
CMD_STORE = "store"
CMD_FETCH = "fetch"
OP_ADD_FLAGS = "+FLAGS"

# FETCH item specs
FETCH_UID = "(UID)"
FETCH_HEADER_UID = "(RFC822.HEADER UID)"
FETCH_MESSAGE = "(RFC822)"
FETCH_MESSAGE_FLAGS_UID = "(RFC822 FLAGS UID)"

FOLDER_INBOX = "INBOX"

_FETCH_START = re.compile(rb"^(?P<seq>\d+) \(")
_UID_RE = re.compile(rb"UID\s+(\d+)")
_FLAGS_RE = re.compile(rb"FLAGS\s+\((.*?)\)")


def check_response(command: str, typ, data):
    """Raise imaplib.IMAP4.error unless the server answered OK.

    Returns data so calls can be chained: ``data = check_response("SELECT", *conn.select(...))``.
    """
    if typ != "OK":
        detail = b" ".join(d for d in (data or []) if isinstance(d, bytes)).decode("utf-8", errors="replace")
        raise imaplib.IMAP4.error(f"{command} failed: {typ} {detail}".strip())
    return data


def get_imap_connection(host, user, password=None, oauth2_token=None):
    """
    Establishes a TLS connection to the IMAP server (port 993 unless the host URL says otherwise)
    and logs in. Supports both basic auth (password) and OAuth 2.0 (XOAUTH2).

    ``host`` may be a bare hostname or a URL: ``imaps://host:port`` or ``imap://host:port``
    for a plain TCP connection.

    Raises ValueError on bad parameters; connection and login errors propagate.
    """
    if not host or not user:
        raise ValueError(f"Invalid credentials for {host}")

    if not password and not oauth2_token:
        raise ValueError(f"Either password or oauth2_token is required for {host}")

    use_ssl = True
    resolved_host = host
    port = None
    if "://" in host:
        parsed = urllib.parse.urlparse(host)
        scheme = parsed.scheme.lower()
        if not scheme or not parsed.hostname:
            raise ValueError("Invalid IMAP host")
        if scheme in {"imap", "tcp"}:
            use_ssl = False
        elif scheme in {"imaps", "imap+ssl", "imapssl", "ssl"}:
            use_ssl = True
        else:
            raise ValueError(f"Unsupported IMAP scheme: {scheme}")
        resolved_host = parsed.hostname
        port = parsed.port

    if use_ssl:
        conn = imaplib.IMAP4_SSL(resolved_host, port) if port else imaplib.IMAP4_SSL(resolved_host)
    else:
        conn = imaplib.IMAP4(resolved_host, port) if port else imaplib.IMAP4(resolved_host)

    try:
        if oauth2_token:
            auth_string = f"user={user}\x01auth=Bearer {oauth2_token}\x01\x01"
            conn.authenticate("XOAUTH2", lambda _: auth_string.encode())
        else:
            conn.login(user, password)
    except Exception:
        conn.shutdown()
        raise
    return conn


def get_imap_connection_from_conf(conf):
    """
    Establishes an IMAP connection using a conf dict (see imap_session.build_imap_conf).
    """
    return get_imap_connection(conf["host"], conf["user"], conf.get("password"), conf.get("oauth2_token"))


def quote_folder(folder_name: str) -> str:
    """Quote a folder name for SELECT / APPEND (imaplib does no quoting of its own)."""
    escaped = folder_name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def select_folder(imap_conn, folder_name: str) -> int:
    """SELECT a folder read-write and return its message count."""
    data = check_response("SELECT", *imap_conn.select(quote_folder(folder_name)))
    return int(data[0]) if data and data[0] else 0


def full_range(count: int) -> str:
    return f"1:{count}"


def uid_set(uids) -> str:
    """Comma-joined UID list for UID STORE / UID FETCH."""
    return ",".join(str(uid) for uid in uids)


def parse_fetch_response(data) -> list[dict]:
    """
    Parses the data list returned by ``fetch`` / ``uid("fetch", ...)``.

    imaplib hands back one tuple ``(meta, literal)`` per literal, followed by the trailing
    bytes of the response (``b")"`` or ``b" FLAGS (\\Seen))"``). Responses without a
    literal arrive as a single bytes item like ``b"1 (UID 7)"``.

    Returns one dict per message: ``{"seq", "uid", "flags", "content"}`` where uid is
    None if the server did not send it and content is None if no literal was returned.
    """
    messages: list[dict] = []
    current = None

    for item in data or []:
        if item is None:
            continue
        if isinstance(item, tuple):
            meta, literal = item[0], item[1]
        else:
            meta, literal = item, None

        # Trailing parts start with a space or ")", never with a sequence number
        start = _FETCH_START.match(meta)
        if start:
            current = {"seq": int(start.group("seq")), "uid": None, "flags": None, "content": None}
            messages.append(current)
        if current is None:
            continue

        uid_match = _UID_RE.search(meta)
        if uid_match and current["uid"] is None:
            current["uid"] = int(uid_match.group(1))
        flags_match = _FLAGS_RE.search(meta)
        if flags_match and current["flags"] is None:
            current["flags"] = flags_match.group(1).decode("utf-8", errors="ignore")
        if literal is not None and current["content"] is None:
            current["content"] = literal

    return messages


def require_uid(message: dict) -> int:
    """Return the message UID, raising if the server left it out."""
    if message["uid"] is None:
        raise imaplib.IMAP4.error(f"FETCH response for message {message['seq']} has no UID")
    return message["uid"]


def fetch_messages(imap_conn, message_set: str, items: str) -> list[dict]:
    """Sequence-number FETCH, parsed."""
    data = check_response("FETCH", *imap_conn.fetch(message_set, items))
    return parse_fetch_response(data)


def uid_fetch_messages(imap_conn, uids: str, items: str) -> list[dict]:
    """UID FETCH, parsed."""
    data = check_response("UID FETCH", *imap_conn.uid(CMD_FETCH, uids, items))
    return parse_fetch_response(data)


def fetch_headers(imap_conn, count: int) -> list[tuple[int, bytes]]:
    """
    Fetch (uid, raw header) for every message of the selected folder in one request.

    Raises if a message comes back without its header literal.
    """
    if count <= 0:
        return []
    headers = []
    for message in fetch_messages(imap_conn, full_range(count), FETCH_HEADER_UID):
        uid = require_uid(message)
        if message["content"] is None:
            raise imaplib.IMAP4.error(f"FETCH response for message {message['seq']} has no header")
        headers.append((uid, message["content"]))
    return headers


def normalize_flags(flags: str | None) -> str | None:
    """Return flags as a parenthesized IMAP list, or None if empty."""
    if not flags:
        return None
    stripped = str(flags).strip()
    if not stripped:
        return None
    if stripped.startswith("(") and stripped.endswith(")"):
        return stripped
    return f"({stripped})"


def add_flags(imap_conn, message_set: str, flags: str) -> None:
    """STORE +FLAGS on a sequence set of the selected folder."""
    check_response("STORE", *imap_conn.store(message_set, OP_ADD_FLAGS, normalize_flags(flags)))


def uid_add_flags(imap_conn, uids: str, flags: str) -> None:
    """UID STORE +FLAGS on a UID set of the selected folder."""
    check_response("UID STORE", *imap_conn.uid(CMD_STORE, uids, OP_ADD_FLAGS, normalize_flags(flags)))


def expunge(imap_conn) -> None:
    check_response("EXPUNGE", *imap_conn.expunge())


def append_email(imap_conn, folder_name: str, raw_content: bytes, flags: str | None = None, date_str=None) -> None:
    """Append an email message to a folder.

    This is intentionally a thin wrapper around IMAP APPEND; duplicate checks and flag
    handling are left to the caller.
    """
    check_response(
        "APPEND",
        *imap_conn.append(quote_folder(folder_name), normalize_flags(flags), date_str, raw_content),
    )


def clear_folder(imap_conn, folder_name: str) -> int:
    """
    Marks every message of a folder \\Deleted and expunges.

    An empty folder gets no STORE but is still expunged.
    Returns the number of messages that were flagged.
    """
    count = select_folder(imap_conn, folder_name)
    if count > 0:
        add_flags(imap_conn, full_range(count), FLAG_DELETED)
    expunge(imap_conn)
    return count


def collect_uids(imap_conn, folder_name: str) -> list[int]:
    """Returns the UIDs of all messages in a folder, in sequence order."""
    count = select_folder(imap_conn, folder_name)
    if count <= 0:
        return []
    return [require_uid(m) for m in fetch_messages(imap_conn, full_range(count), FETCH_UID)]
