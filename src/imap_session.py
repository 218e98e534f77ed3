"""
IMAP Session Management

Connection config, session lifetime and the account command-line options shared by
all scripts. Combines imap_common (low-level IMAP) with imap_oauth2 (token acquisition).
"""

import os
from contextlib import contextmanager

import imap_common
import imap_oauth2


def build_imap_conf(host, user, password, client_id=None, client_secret=None, label=None):
    """
    Build a standard IMAP connection config dict.

    If client_id is provided, acquires an OAuth2 token (sys.exit(1) on failure).
    Otherwise, builds a password-auth config.

    Returns:
        Dict with keys: host, user, password, oauth2_token, oauth2_provider
    """
    oauth2_token = None
    oauth2_provider = None

    if client_id:
        oauth2_token, oauth2_provider = imap_oauth2.acquire_token(host, client_id, user, client_secret, label)

    return {
        "host": host,
        "user": user,
        "password": password,
        "oauth2_token": oauth2_token,
        "oauth2_provider": oauth2_provider,
    }


@contextmanager
def open_session(conf):
    """
    Connect and log in; yields the imaplib connection.

    The session is released with a best-effort LOGOUT on exit. Errors raised by
    LOGOUT are ignored so they never mask the outcome of the work done in the block.
    """
    conn = imap_common.get_imap_connection_from_conf(conf)
    try:
        yield conn
    finally:
        try:
            conn.logout()
        except Exception:
            pass


def add_account_arguments(parser, prefix="", env_prefix="", label=""):
    """
    Adds --host/--user/--pass/--oauth2-client-id/--oauth2-client-secret options.

    With ``prefix="src"`` and ``env_prefix="SRC_"`` the options become --src-host etc.,
    defaulting to SRC_IMAP_HOST etc. Values found in the environment make the option optional.
    """
    opt = f"--{prefix}-" if prefix else "--"
    dest = f"{prefix}_" if prefix else ""
    what = f"{label} " if label else ""

    default_host = os.getenv(f"{env_prefix}IMAP_HOST")
    default_user = os.getenv(f"{env_prefix}IMAP_USERNAME")
    default_pass = os.getenv(f"{env_prefix}IMAP_PASSWORD")
    default_client_id = os.getenv(f"{env_prefix}OAUTH2_CLIENT_ID")

    parser.add_argument(
        f"{opt}host",
        dest=f"{dest}host",
        default=default_host,
        required=not bool(default_host),
        help=f"{what}IMAP Host (or {env_prefix}IMAP_HOST)".strip(),
    )
    parser.add_argument(
        f"{opt}user",
        dest=f"{dest}user",
        default=default_user,
        required=not bool(default_user),
        help=f"{what}Username (or {env_prefix}IMAP_USERNAME)".strip(),
    )

    auth_required = not bool(default_pass or default_client_id)
    auth_group = parser.add_mutually_exclusive_group(required=auth_required)
    auth_group.add_argument(
        f"{opt}pass",
        dest=f"{dest}password",
        default=default_pass,
        help=f"{what}Password (or {env_prefix}IMAP_PASSWORD)".strip(),
    )
    auth_group.add_argument(
        f"{opt}oauth2-client-id",
        dest=f"{dest}client_id",
        default=default_client_id,
        help=f"{what}OAuth2 Client ID (or {env_prefix}OAUTH2_CLIENT_ID)".strip(),
    )
    parser.add_argument(
        f"{opt}oauth2-client-secret",
        dest=f"{dest}client_secret",
        default=os.getenv(f"{env_prefix}OAUTH2_CLIENT_SECRET"),
        help=f"{what}OAuth2 Client Secret (if required) (or {env_prefix}OAUTH2_CLIENT_SECRET)".strip(),
    )


def conf_from_args(args, prefix="", label=None):
    """Build a conf dict from options added by add_account_arguments."""
    dest = f"{prefix}_" if prefix else ""
    return build_imap_conf(
        getattr(args, f"{dest}host"),
        getattr(args, f"{dest}user"),
        getattr(args, f"{dest}password"),
        getattr(args, f"{dest}client_id"),
        getattr(args, f"{dest}client_secret"),
        label,
    )


def print_account_summary(conf, title=""):
    """Print the host/user/auth lines of the configuration summary."""
    pad = 16
    print(f"{(title + ' Host').strip():<{pad}}: {conf['host']}")
    print(f"{(title + ' User').strip():<{pad}}: {conf['user']}")
    print(f"{(title + ' Auth').strip():<{pad}}: {imap_oauth2.auth_description(conf.get('oauth2_provider'))}")
