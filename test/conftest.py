"""
Shared pytest fixtures and utilities for the IMAP tools tests.
"""

import os
import sys
from contextlib import contextmanager

import pytest

# Ensure src/tools are in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../tools")))

from mock_imap_server import start_server_thread


def make_message(subject, body, date="Mon, 01 Jan 2024 10:00:00 +0000", sender="alice@example.com", extra=""):
    """Build a small RFC822 message with CRLF line endings."""
    return (
        f"From: {sender}\r\nDate: {date}\r\nSubject: {subject}\r\n{extra}\r\n{body}\r\n".encode()
    )


def shutdown_server(server):
    server.shutdown()
    server.server_close()  # Explicitly close socket


@pytest.fixture
def single_mock_server():
    """
    Factory fixture creating one mock IMAP server, for scripts that use one account.
    Returns (server, port).
    """
    servers = []

    def _create(initial_data=None):
        server, port = start_server_thread(0, initial_data)
        servers.append(server)
        return server, port

    yield _create

    for server in servers:
        shutdown_server(server)


@pytest.fixture
def mock_server_factory():
    """
    Factory fixture creating a source/destination pair of mock IMAP servers.
    Returns (src_server, dest_server, src_port, dest_port).
    """
    servers = []

    def _create(src_data=None, dest_data=None):
        src_server, src_port = start_server_thread(0, src_data)
        dest_server, dest_port = start_server_thread(0, dest_data)
        servers.extend([src_server, dest_server])
        return src_server, dest_server, src_port, dest_port

    yield _create

    for server in servers:
        shutdown_server(server)


@pytest.fixture
def imap_conn_factory():
    """Factory for logged-in imaplib connections to a mock server, logged out after the test."""
    import imaplib

    conns = []

    def _connect(port):
        conn = imaplib.IMAP4("localhost", port)
        conn.login("user", "pass")
        conns.append(conn)
        return conn

    yield _connect

    for conn in conns:
        try:
            conn.logout()
        except Exception:
            pass


@contextmanager
def temp_env(env):
    original = os.environ.copy()
    os.environ.clear()
    os.environ.update(env)
    try:
        yield
    finally:
        os.environ.clear()
        os.environ.update(original)


@pytest.fixture(autouse=True)
def clean_sys_argv():
    """Ensure sys.argv is clean for all tests."""
    original = sys.argv[:]
    sys.argv = ["test_script.py"]
    yield
    sys.argv = original


def single_account_env(port, **extra):
    env = {
        "IMAP_HOST": f"imap://localhost:{port}",
        "IMAP_USERNAME": "user",
        "IMAP_PASSWORD": "pass",
    }
    env.update(extra)
    return env


__all__ = [
    "mock_server_factory",
    "single_mock_server",
    "imap_conn_factory",
    "make_message",
    "single_account_env",
    "temp_env",
]
