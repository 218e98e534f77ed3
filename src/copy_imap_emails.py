"""
IMAP Folder Copy Script

Copies every message of one source folder into one destination folder, on another
(or the same) IMAP account.

Messages are fetched from the source in pages of 10 and appended to the destination
one by one, in source order. Source UIDs in the ignore set are skipped. When the copy
is done, the given flags (default: \\Seen) are added to every message of the
destination folder.

There is no duplicate check and no retry: the first failure stops the copy, and the
destination keeps whatever was appended up to that point.

Configuration (Environment Variables):
  Source Account:
    SRC_IMAP_HOST       : Source IMAP Host (e.g., imap.gmail.com)
    SRC_IMAP_USERNAME   : Source Username/Email
    SRC_IMAP_PASSWORD   : Source Password (or App Password)
    SRC_OAUTH2_CLIENT_ID / SRC_OAUTH2_CLIENT_SECRET : OAuth2 instead of password

  Destination Account:
    DEST_IMAP_HOST      : Destination IMAP Host
    DEST_IMAP_USERNAME  : Destination Username/Email
    DEST_IMAP_PASSWORD  : Destination Password
    DEST_OAUTH2_CLIENT_ID / DEST_OAUTH2_CLIENT_SECRET : OAuth2 instead of password

  Options:
    COPY_FLAGS          : Flags added to the destination folder after the copy (default: \\Seen)

Usage Example:
    # Gmail "Sent Mail" into a plain "Sent" folder, emptying it first
    python3 copy_imap_emails.py "[Gmail]/Sent Mail" "Sent" --clear-dest \
        --src-host "imap.gmail.com" --src-user "me@gmail.com" --src-pass "APP_PASSWORD" \
        --dest-host "imap.example.com" --dest-user "me@example.com" --dest-pass "PASSWORD"

    # Drafts keep their draft flag
    python3 copy_imap_emails.py "[Gmail]/Drafts" "Drafts" --clear-dest --flags "\\Seen \\Draft" ...

    # All Mail into INBOX, skipping what was already copied from Drafts and Sent Mail
    python3 copy_imap_emails.py "[Gmail]/All Mail" "INBOX" --clear-dest \
        --ignore-folder "[Gmail]/Drafts" --ignore-folder "[Gmail]/Sent Mail" ...
"""

import argparse
import bisect
import imaplib
import os
import sys

import imap_common
import imap_session

PAGE_SIZE = 10


def page_ranges(count, page_size=PAGE_SIZE):
    """Sequence-number ranges covering 1..count, the last one clamped to count."""
    return [f"{start}:{min(start + page_size - 1, count)}" for start in range(1, count + 1, page_size)]


def is_ignored(sorted_uids, uid):
    i = bisect.bisect_left(sorted_uids, uid)
    return i < len(sorted_uids) and sorted_uids[i] == uid


def print_progress(done, total):
    pct = done / total * 100.0 if total else 100.0
    print(f"{done}/{total} ({pct:.02f}%) ", end="\r", flush=True)


def copy_emails(src, dest, src_folder, dest_folder, flags, ignore_uids=()):
    """
    Appends every non-ignored message of src_folder to dest_folder, then adds ``flags``
    to the whole destination folder.

    Returns the number of messages appended.
    """
    ignore = sorted(ignore_uids)

    email_count = imap_common.select_folder(src, src_folder)
    print(f"Email count on {src_folder}: {email_count}")

    copied = 0
    for message_set in page_ranges(email_count):
        for message in imap_common.fetch_messages(src, message_set, imap_common.FETCH_MESSAGE_FLAGS_UID):
            if is_ignored(ignore, imap_common.require_uid(message)):
                continue
            if message["content"] is None:
                raise imaplib.IMAP4.error(f"FETCH {message['seq']} returned no message body")
            imap_common.append_email(dest, dest_folder, message["content"])
            copied += 1
            print_progress(message["seq"], email_count)
    print()

    dest_count = imap_common.select_folder(dest, dest_folder)
    if dest_count > 0 and imap_common.normalize_flags(flags):
        imap_common.add_flags(dest, imap_common.full_range(dest_count), flags)

    return copied


def main(argv=None):
    parser = argparse.ArgumentParser(description="Copy one IMAP folder into another.")
    parser.add_argument("src_folder", help="Source folder (e.g. '[Gmail]/Sent Mail')")
    parser.add_argument("dest_folder", help="Destination folder (e.g. 'Sent')")

    imap_session.add_account_arguments(parser, prefix="src", env_prefix="SRC_", label="Source")
    imap_session.add_account_arguments(parser, prefix="dest", env_prefix="DEST_", label="Destination")

    parser.add_argument(
        "--flags",
        default=os.getenv("COPY_FLAGS", imap_common.FLAG_SEEN),
        help="Flags added to the destination folder after the copy (or COPY_FLAGS, default \\Seen)",
    )
    parser.add_argument(
        "--ignore-uid",
        dest="ignore_uids",
        type=int,
        action="append",
        default=[],
        help="Source UID to skip (repeatable)",
    )
    parser.add_argument(
        "--ignore-folder",
        dest="ignore_folders",
        action="append",
        default=[],
        help="Skip every source UID found in this source folder (repeatable)",
    )
    parser.add_argument(
        "--clear-dest",
        action="store_true",
        help="Delete everything in the destination folder before copying",
    )
    args = parser.parse_args(argv)

    src_conf = imap_session.conf_from_args(args, "src", label="source")
    dest_conf = imap_session.conf_from_args(args, "dest", label="destination")

    print("\n--- Configuration Summary ---")
    imap_session.print_account_summary(src_conf, "Source")
    imap_session.print_account_summary(dest_conf, "Destination")
    print(f"{'Source Folder':<16}: {args.src_folder}")
    print(f"{'Dest Folder':<16}: {args.dest_folder}")
    print(f"{'Flags':<16}: {args.flags}")
    print(f"{'Clear Dest':<16}: {args.clear_dest}")
    if args.ignore_folders:
        print(f"{'Ignore Folders':<16}: {', '.join(args.ignore_folders)}")
    print("-----------------------------\n")

    try:
        with imap_session.open_session(src_conf) as src, imap_session.open_session(dest_conf) as dest:
            ignore_uids = list(args.ignore_uids)
            for folder in args.ignore_folders:
                ignore_uids.extend(imap_common.collect_uids(src, folder))

            if args.clear_dest:
                cleared = imap_common.clear_folder(dest, args.dest_folder)
                print(f"Cleared {cleared} emails from {args.dest_folder}.")

            copied = copy_emails(src, dest, args.src_folder, args.dest_folder, args.flags, ignore_uids)
        print(f"{copied} emails copied to {args.dest_folder}.")
    except KeyboardInterrupt:
        print("\n\nProcess terminated by user.")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)


if __name__ == "__main__":
    main()
