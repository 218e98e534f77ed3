"""
Tests for imap_common.py

Tests cover:
- Response checking
- FETCH response parsing
- Connection setup (URL schemes, password and XOAUTH2 auth)
- Folder helpers: select, clear, collect UIDs, append
"""

import imaplib
import os
import sys
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

import imap_common
from conftest import make_message


class TestCheckResponse:
    def test_ok_returns_data(self):
        assert imap_common.check_response("NOOP", "OK", [b"done"]) == [b"done"]

    def test_no_raises_with_command_name(self):
        with pytest.raises(imaplib.IMAP4.error) as exc_info:
            imap_common.check_response("SELECT", "NO", [b"[NONEXISTENT] Folder not found"])
        assert "SELECT failed" in str(exc_info.value)
        assert "NONEXISTENT" in str(exc_info.value)

    def test_handles_empty_data(self):
        with pytest.raises(imaplib.IMAP4.error):
            imap_common.check_response("EXPUNGE", "BAD", None)


class TestParseFetchResponse:
    def test_literal_messages(self):
        data = [
            (b"1 (UID 11 FLAGS (\\Seen) RFC822 {5}", b"hello"),
            b")",
            (b"2 (UID 12 FLAGS () RFC822 {5}", b"world"),
            b")",
        ]
        messages = imap_common.parse_fetch_response(data)

        assert [m["seq"] for m in messages] == [1, 2]
        assert [m["uid"] for m in messages] == [11, 12]
        assert messages[0]["flags"] == "\\Seen"
        assert messages[1]["flags"] == ""
        assert messages[0]["content"] == b"hello"
        assert messages[1]["content"] == b"world"

    def test_uid_after_literal(self):
        """Some servers send UID/FLAGS after the literal."""
        data = [(b"3 (RFC822.HEADER {9}", b"Subject:x"), b" UID 42 FLAGS (\\Seen))"]
        messages = imap_common.parse_fetch_response(data)

        assert len(messages) == 1
        assert messages[0]["uid"] == 42
        assert messages[0]["flags"] == "\\Seen"
        assert messages[0]["content"] == b"Subject:x"

    def test_uid_only_response(self):
        messages = imap_common.parse_fetch_response([b"1 (UID 5)", b"2 (UID 9)"])
        assert [(m["seq"], m["uid"], m["content"]) for m in messages] == [(1, 5, None), (2, 9, None)]

    def test_none_and_empty(self):
        assert imap_common.parse_fetch_response(None) == []
        assert imap_common.parse_fetch_response([None]) == []

    def test_require_uid_raises_when_missing(self):
        message = imap_common.parse_fetch_response([(b"1 (RFC822 {2}", b"hi"), b")"])[0]
        with pytest.raises(imaplib.IMAP4.error, match="no UID"):
            imap_common.require_uid(message)


class TestSmallHelpers:
    def test_normalize_flags(self):
        assert imap_common.normalize_flags("\\Seen") == "(\\Seen)"
        assert imap_common.normalize_flags("\\Seen \\Draft") == "(\\Seen \\Draft)"
        assert imap_common.normalize_flags("(\\Seen)") == "(\\Seen)"
        assert imap_common.normalize_flags("  ") is None
        assert imap_common.normalize_flags(None) is None

    def test_quote_folder(self):
        assert imap_common.quote_folder("[Gmail]/Sent Mail") == '"[Gmail]/Sent Mail"'
        assert imap_common.quote_folder('a"b') == '"a\\"b"'

    def test_uid_set_and_range(self):
        assert imap_common.uid_set([3, 7, 12]) == "3,7,12"
        assert imap_common.full_range(4) == "1:4"


class TestGetImapConnection:
    def test_missing_host_or_user(self):
        with pytest.raises(ValueError):
            imap_common.get_imap_connection("", "user", "pass")
        with pytest.raises(ValueError):
            imap_common.get_imap_connection("imap.example.com", "", "pass")

    def test_missing_auth(self):
        with pytest.raises(ValueError, match="password or oauth2_token"):
            imap_common.get_imap_connection("imap.example.com", "user")

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError, match="Unsupported IMAP scheme"):
            imap_common.get_imap_connection("http://imap.example.com", "user", "pass")

    def test_bare_host_uses_ssl_default_port(self):
        mock_conn = MagicMock()
        with patch.object(imap_common.imaplib, "IMAP4_SSL", return_value=mock_conn) as mock_ssl:
            conn = imap_common.get_imap_connection("imap.example.com", "user", "secret")

        mock_ssl.assert_called_once_with("imap.example.com")
        mock_conn.login.assert_called_once_with("user", "secret")
        assert conn is mock_conn

    def test_imaps_url_with_port(self):
        mock_conn = MagicMock()
        with patch.object(imap_common.imaplib, "IMAP4_SSL", return_value=mock_conn) as mock_ssl:
            imap_common.get_imap_connection("imaps://mail.example.com:1993", "user", "secret")

        mock_ssl.assert_called_once_with("mail.example.com", 1993)

    def test_xoauth2(self):
        mock_conn = MagicMock()
        with patch.object(imap_common.imaplib, "IMAP4_SSL", return_value=mock_conn):
            imap_common.get_imap_connection("imap.gmail.com", "user@gmail.com", oauth2_token="tok")

        mock_conn.login.assert_not_called()
        mechanism, auth_cb = mock_conn.authenticate.call_args[0]
        assert mechanism == "XOAUTH2"
        assert auth_cb(None) == b"user=user@gmail.com\x01auth=Bearer tok\x01\x01"

    def test_login_failure_closes_socket_and_raises(self):
        mock_conn = MagicMock()
        mock_conn.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")
        with patch.object(imap_common.imaplib, "IMAP4_SSL", return_value=mock_conn):
            with pytest.raises(imaplib.IMAP4.error):
                imap_common.get_imap_connection("imap.example.com", "user", "bad")

        mock_conn.shutdown.assert_called_once()

    def test_plain_connection_to_mock_server(self, single_mock_server):
        _, port = single_mock_server({"INBOX": [make_message("Hi", "Body")]})
        conn = imap_common.get_imap_connection(f"imap://localhost:{port}", "user", "pass")
        try:
            assert imap_common.select_folder(conn, "INBOX") == 1
        finally:
            conn.logout()


class TestFolderHelpers:
    def test_select_missing_folder_raises(self, single_mock_server, imap_conn_factory):
        _, port = single_mock_server({"INBOX": []})
        conn = imap_conn_factory(port)

        with pytest.raises(imaplib.IMAP4.error, match="SELECT failed"):
            imap_common.select_folder(conn, "Nope")

    def test_clear_empty_folder_skips_store_but_expunges(self, single_mock_server, imap_conn_factory):
        server, port = single_mock_server({"Sent": []})
        conn = imap_conn_factory(port)

        assert imap_common.clear_folder(conn, "Sent") == 0

        assert server.commands_named("STORE") == []
        assert server.commands_named("EXPUNGE") == ["EXPUNGE"]

    def test_clear_folder_removes_everything(self, single_mock_server, imap_conn_factory):
        server, port = single_mock_server(
            {"Sent": [make_message("A", "1"), make_message("B", "2"), make_message("C", "3")], "INBOX": [b"x"]}
        )
        conn = imap_conn_factory(port)

        assert imap_common.clear_folder(conn, "Sent") == 3

        assert server.folders["Sent"] == []
        assert len(server.folders["INBOX"]) == 1
        assert server.commands_named("STORE") == ["STORE 1:3 +FLAGS (\\Deleted)"]

    def test_collect_uids(self, single_mock_server, imap_conn_factory):
        drafts = [
            {"uid": 4, "content": make_message("D1", "x")},
            {"uid": 9, "content": make_message("D2", "y")},
            {"uid": 15, "content": make_message("D3", "z")},
        ]
        _, port = single_mock_server({"Drafts": drafts, "Empty": []})
        conn = imap_conn_factory(port)

        assert imap_common.collect_uids(conn, "Drafts") == [4, 9, 15]
        assert imap_common.collect_uids(conn, "Empty") == []

    def test_fetch_headers_returns_header_block_only(self, single_mock_server, imap_conn_factory):
        _, port = single_mock_server({"INBOX": [make_message("Hello", "secret body")]})
        conn = imap_conn_factory(port)
        count = imap_common.select_folder(conn, "INBOX")

        headers = imap_common.fetch_headers(conn, count)

        assert len(headers) == 1
        uid, header = headers[0]
        assert uid == 1
        assert b"Subject: Hello" in header
        assert b"secret body" not in header

    def test_fetch_headers_empty_folder_sends_nothing(self):
        conn = MagicMock()
        assert imap_common.fetch_headers(conn, 0) == []
        conn.fetch.assert_not_called()

    def test_fetch_headers_without_header_literal_raises(self):
        conn = MagicMock()
        conn.fetch.return_value = ("OK", [b"1 (UID 5)", b"2 (UID 6)"])

        with pytest.raises(imaplib.IMAP4.error, match="message 1 has no header"):
            imap_common.fetch_headers(conn, 2)

    def test_append_email(self, single_mock_server, imap_conn_factory):
        server, port = single_mock_server({"Sent Items": []})
        conn = imap_conn_factory(port)

        imap_common.append_email(conn, "Sent Items", make_message("A", "1"), "\\Seen")

        assert len(server.folders["Sent Items"]) == 1
        assert server.folders["Sent Items"][0]["flags"] == {"\\Seen"}

    def test_append_to_missing_folder_raises(self, single_mock_server, imap_conn_factory):
        _, port = single_mock_server({"INBOX": []})
        conn = imap_conn_factory(port)

        with pytest.raises(imaplib.IMAP4.error, match="APPEND failed"):
            imap_common.append_email(conn, "Missing", make_message("A", "1"))
