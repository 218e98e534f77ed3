"""
IMAP Delete-by-Sender Script

Deletes every message of a folder whose From: header contains the given sender
(case-insensitive substring match, e.g. an address copied into INBOX from a Sent folder).

All headers are fetched in one request; the matching messages are flagged \\Deleted
with a single UID STORE and the folder is expunged. Nothing is sent to the server
when no message matches.

Configuration (Environment Variables):
    IMAP_HOST        : IMAP Host (e.g., imap.gmail.com)
    IMAP_USERNAME    : Username/Email
    IMAP_PASSWORD    : Password (or App Password)
    IMAP_FOLDER      : Folder to clean (default: INBOX)
    SENDER_PATTERN   : Sender text to match in the From: header

    OAuth2 (Optional - instead of password):
    OAUTH2_CLIENT_ID        : OAuth2 Client ID
    OAUTH2_CLIENT_SECRET    : OAuth2 Client Secret (required for Google)

Usage Example:
    python3 delete_imap_sender.py "INBOX" --sender "me@example.com" \
        --host "imap.example.com" \
        --user "me@example.com" \
        --pass "PASSWORD"
"""

import argparse
import os
import re
import sys

import imap_common
import imap_session


def sender_pattern(sender):
    """Regex matching a From: header line that contains ``sender`` anywhere."""
    return re.compile(rf"From:\s+(.*{re.escape(sender)}.*)", re.IGNORECASE | re.MULTILINE)


def match_sender(header_text, pattern):
    """Concatenated From: matches of a header block ("" when the sender is absent)."""
    return "".join(m.group(0) for m in pattern.finditer(header_text))


def delete_from_sender(imap_conn, folder_name, sender) -> list[int]:
    """
    Flags every message sent by ``sender`` \\Deleted and expunges the folder.
    Returns the deleted UIDs.
    """
    pattern = sender_pattern(sender)
    count = imap_common.select_folder(imap_conn, folder_name)

    uids = []
    for uid, raw_header in imap_common.fetch_headers(imap_conn, count):
        match = match_sender(raw_header.decode("utf-8"), pattern)
        if match:
            print(f"{uid} {match.strip()}")
            uids.append(uid)

    if uids:
        imap_common.uid_add_flags(imap_conn, imap_common.uid_set(uids), imap_common.FLAG_DELETED)
        imap_common.expunge(imap_conn)
        print(f"{len(uids)} deleted.")
    return uids


def main(argv=None):
    parser = argparse.ArgumentParser(description="Delete emails from a given sender in an IMAP folder.")
    parser.add_argument(
        "folder",
        nargs="?",
        default=os.getenv("IMAP_FOLDER") or imap_common.FOLDER_INBOX,
        help="Folder to clean (or IMAP_FOLDER, default INBOX)",
    )
    default_sender = os.getenv("SENDER_PATTERN")
    parser.add_argument(
        "--sender",
        default=default_sender,
        required=not bool(default_sender),
        help="Text to look for in the From: header (or SENDER_PATTERN)",
    )
    imap_session.add_account_arguments(parser)
    args = parser.parse_args(argv)

    conf = imap_session.conf_from_args(args)

    print("\n--- Configuration Summary ---")
    imap_session.print_account_summary(conf)
    print(f"{'Folder':<16}: {args.folder}")
    print(f"{'Sender':<16}: {args.sender}")
    print("-----------------------------\n")

    try:
        with imap_session.open_session(conf) as conn:
            uids = delete_from_sender(conn, args.folder, args.sender)
        if not uids:
            print(f"No emails from {args.sender} in {args.folder}.")
    except KeyboardInterrupt:
        print("\n\nProcess terminated by user.")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)


if __name__ == "__main__":
    main()
