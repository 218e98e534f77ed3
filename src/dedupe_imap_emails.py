"""
IMAP Duplicate Removal Script

Deletes duplicate messages within one IMAP folder.

How duplicates are found:
1. All headers of the folder are fetched in one request (no bodies).
2. Each message gets a header key: every "Date:" and "Subject:" line of its header,
   concatenated in order of appearance (case-insensitive match).
3. Two messages that are adjacent in the folder and share the same non-empty key
   become duplicate candidates.
4. Each candidate is fetched in full and its content is MD5-hashed. The first message
   seen with a hash is kept; later ones are flagged \\Deleted.
5. The folder is expunged once at the end.

Only adjacent messages are compared, so duplicates that are not next to each other in
the folder are left alone.

Configuration (Environment Variables):
    IMAP_HOST        : IMAP Host (e.g., imap.gmail.com)
    IMAP_USERNAME    : Username/Email
    IMAP_PASSWORD    : Password (or App Password)
    IMAP_FOLDER      : Folder to deduplicate (default: INBOX)

    OAuth2 (Optional - instead of password):
    OAUTH2_CLIENT_ID        : OAuth2 Client ID
    OAUTH2_CLIENT_SECRET    : OAuth2 Client Secret (required for Google)

Usage Example:
    python3 dedupe_imap_emails.py "INBOX" \
        --host "imap.example.com" \
        --user "user@example.com" \
        --pass "PASSWORD"
"""

import argparse
import hashlib
import imaplib
import os
import re
import sys

import imap_common
import imap_session

HEADER_KEY_PATTERN = re.compile(r"(Date|Subject):\s+(.+)", re.IGNORECASE | re.MULTILINE)


def header_key(header_text: str) -> str:
    """Concatenation of every Date:/Subject: match in a raw header block."""
    return "".join(m.group(0) for m in HEADER_KEY_PATTERN.finditer(header_text))


def find_duplicate_candidates(headers) -> list[int]:
    """
    Returns the UIDs of messages whose header key equals the key of the message just before.

    ``headers`` is a sequence of (uid, raw_header_bytes) in folder order. For every adjacent
    pair with equal non-empty keys both UIDs are appended, so in a run of three or more
    the UIDs inside the run appear twice. Header bytes must be valid UTF-8.
    """
    candidates = []
    prev_uid = None
    prev_key = ""
    for uid, raw_header in headers:
        key = header_key(raw_header.decode("utf-8"))
        if key and key == prev_key:
            candidates.append(prev_uid)
            candidates.append(uid)
        prev_uid = uid
        prev_key = key
    return candidates


def content_hash(raw_message: bytes) -> bytes:
    return hashlib.md5(raw_message).digest()


def delete_duplicates(imap_conn, folder_name) -> list[int]:
    """
    Flags every candidate whose content was already seen in this pass, then expunges.

    Returns the UIDs flagged \\Deleted (a UID may be listed twice, see find_duplicate_candidates).
    Any IMAP error aborts; flags already stored remain set.
    """
    count = imap_common.select_folder(imap_conn, folder_name)
    headers = imap_common.fetch_headers(imap_conn, count)

    candidates = find_duplicate_candidates(headers)
    print(candidates)

    seen_hashes = set()
    deleted = []
    for uid in candidates:
        messages = imap_common.uid_fetch_messages(imap_conn, str(uid), imap_common.FETCH_MESSAGE)
        if not messages or messages[0]["content"] is None:
            raise imaplib.IMAP4.error(f"UID FETCH {uid} returned no message")
        message = messages[0]

        digest = content_hash(message["content"])
        if digest in seen_hashes:
            print(f"{message['seq']} {digest.hex()}")
            imap_common.uid_add_flags(imap_conn, str(uid), imap_common.FLAG_DELETED)
            deleted.append(uid)
        else:
            seen_hashes.add(digest)

    imap_common.expunge(imap_conn)
    return deleted


def main(argv=None):
    parser = argparse.ArgumentParser(description="Delete duplicate emails in an IMAP folder.")
    parser.add_argument(
        "folder",
        nargs="?",
        default=os.getenv("IMAP_FOLDER") or imap_common.FOLDER_INBOX,
        help="Folder to deduplicate (or IMAP_FOLDER, default INBOX)",
    )
    imap_session.add_account_arguments(parser)
    args = parser.parse_args(argv)

    conf = imap_session.conf_from_args(args)

    print("\n--- Configuration Summary ---")
    imap_session.print_account_summary(conf)
    print(f"{'Folder':<16}: {args.folder}")
    print("-----------------------------\n")

    try:
        with imap_session.open_session(conf) as conn:
            deleted = delete_duplicates(conn, args.folder)
        print(f"{len(set(deleted))} duplicates deleted from {args.folder}.")
    except KeyboardInterrupt:
        print("\n\nProcess terminated by user.")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)


if __name__ == "__main__":
    main()
