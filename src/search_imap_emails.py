"""
IMAP Body Search Script

Runs a server-side ``SEARCH CHARSET UTF-8 BODY <text>`` in one folder and prints the matching
message sequence numbers.

Configuration (Environment Variables):
    IMAP_HOST        : IMAP Host (e.g., imap.gmail.com)
    IMAP_USERNAME    : Username/Email
    IMAP_PASSWORD    : Password (or App Password)
    IMAP_FOLDER      : Folder to search (default: INBOX)

    OAuth2 (Optional - instead of password):
    OAUTH2_CLIENT_ID        : OAuth2 Client ID
    OAUTH2_CLIENT_SECRET    : OAuth2 Client Secret (required for Google)

Usage Example:
    python3 search_imap_emails.py "invoice 2019" --folder "INBOX" \
        --host "imap.example.com" \
        --user "me@example.com" \
        --pass "PASSWORD"
"""

import argparse
import os
import sys

import imap_common
import imap_session


def search_body(imap_conn, folder_name, text) -> list[int]:
    """
    Returns the sequence numbers of messages whose body contains ``text``.

    The text goes out as a UTF-8 literal (``SEARCH CHARSET UTF-8 BODY {n}``); imaplib
    only sends ASCII in the command line itself.
    """
    imap_common.select_folder(imap_conn, folder_name)
    imap_conn.literal = text.encode("utf-8")
    data = imap_common.check_response("SEARCH", *imap_conn.search("UTF-8", "BODY"))
    ids = [int(i) for i in data[0].split()] if data and data[0] else []
    print(ids)
    return ids


def main(argv=None):
    parser = argparse.ArgumentParser(description="Search email bodies in an IMAP folder.")
    parser.add_argument("text", help="Text to search for in message bodies")
    parser.add_argument(
        "--folder",
        default=os.getenv("IMAP_FOLDER") or imap_common.FOLDER_INBOX,
        help="Folder to search (or IMAP_FOLDER, default INBOX)",
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
            ids = search_body(conn, args.folder, args.text)
        print(f"{len(ids)} emails in {args.folder} contain '{args.text}'.")
    except KeyboardInterrupt:
        print("\n\nProcess terminated by user.")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)


if __name__ == "__main__":
    main()
