"""
IMAP Folder Clearing Script

Permanently deletes every message in one IMAP folder (STORE +FLAGS \\Deleted on the
whole folder, then EXPUNGE). The folder itself is kept.

Configuration (Environment Variables):
    IMAP_HOST        : IMAP Host (e.g., imap.gmail.com)
    IMAP_USERNAME    : Username/Email
    IMAP_PASSWORD    : Password (or App Password)
    IMAP_FOLDER      : Folder to clear

    OAuth2 (Optional - instead of password):
    OAUTH2_CLIENT_ID        : OAuth2 Client ID
    OAUTH2_CLIENT_SECRET    : OAuth2 Client Secret (required for Google)

Usage Example:
    python3 clear_imap_folder.py "Sent" \
        --host "imap.example.com" \
        --user "me@example.com" \
        --pass "PASSWORD"
"""

import argparse
import os
import sys

import imap_common
import imap_session


def main(argv=None):
    parser = argparse.ArgumentParser(description="Delete every email in an IMAP folder.")
    default_folder = os.getenv("IMAP_FOLDER")
    parser.add_argument(
        "folder",
        nargs="?" if default_folder else None,
        default=default_folder,
        help="Folder to clear (or IMAP_FOLDER)",
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
            count = imap_common.clear_folder(conn, args.folder)
        print(f"Cleared {count} emails from {args.folder}.")
    except KeyboardInterrupt:
        print("\n\nProcess terminated by user.")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)


if __name__ == "__main__":
    main()
