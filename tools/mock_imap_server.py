import re
import socketserver
import threading

RESPONSE_SELECT_FIRST = "NO Select first"
RESPONSE_FORCED_FAILURE = "NO [UNAVAILABLE] Forced failure"

HEADER_SEPARATOR = b"\r\n\r\n"


def split_message(content):
    """Return (header block including the blank line, body)."""
    if HEADER_SEPARATOR in content:
        header, body = content.split(HEADER_SEPARATOR, 1)
        return header + HEADER_SEPARATOR, body
    return content, b""


def parse_mailbox_arg(args):
    """Parse a leading mailbox argument, quoted or atom. Returns (name, rest)."""
    args = args.strip()
    m = re.match(r'"((?:[^"\\]|\\.)*)"\s*(.*)$', args, re.DOTALL)
    if m:
        name = re.sub(r"\\(.)", r"\1", m.group(1))
        return name, m.group(2)
    parts = args.split(" ", 1)
    return parts[0], parts[1] if len(parts) > 1 else ""


def resolve_set(set_str, msgs, by_uid):
    """
    Resolve an IMAP sequence set ("3", "1:10", "5:*", "1,4,7") to [(seq, msg)].
    Sequence numbers outside the folder and unknown UIDs are skipped.
    """
    if not msgs:
        return []
    max_value = msgs[-1]["uid"] if by_uid else len(msgs)
    wanted = set()
    for token in set_str.split(","):
        if ":" in token:
            lo, hi = token.split(":", 1)
            lo = max_value if lo == "*" else int(lo)
            hi = max_value if hi == "*" else int(hi)
            lo, hi = min(lo, hi), max(lo, hi)
            wanted.update(range(lo, hi + 1))
        else:
            wanted.add(max_value if token == "*" else int(token))

    result = []
    for seq, m in enumerate(msgs, start=1):
        key = m["uid"] if by_uid else seq
        if key in wanted:
            result.append((seq, m))
    return result


class MockIMAPHandler(socketserver.StreamRequestHandler):
    """
    A minimal IMAP4rev1 mock server handler for testing purposes.
    Supports the commands the copy, dedupe, delete-sender, clear and search scripts use.
    Every command line received is recorded in ``server.commands``.
    """

    def handle(self):
        self.wfile.write(b"* OK [CAPABILITY IMAP4rev1] Mock IMAP Server Ready\r\n")
        self.selected_folder = None
        self.current_folders = self.server.folders

        while True:
            try:
                line = self.rfile.readline()
                if not line:
                    break
                line = line.decode("utf-8").strip()
                if not line:
                    continue

                parts = line.split(" ", 2)
                tag = parts[0]
                cmd = parts[1].upper()
                args = parts[2] if len(parts) > 2 else ""
                self.server.commands.append(f"{cmd} {args}".strip())

                full_cmd = cmd
                if cmd == "UID":
                    full_cmd = f"UID {args.split(' ', 1)[0].upper()}"
                if full_cmd in self.server.fail_commands:
                    self.send_response(tag, RESPONSE_FORCED_FAILURE)
                    continue

                if cmd == "LOGIN":
                    self.send_response(tag, "OK LOGIN completed")

                elif cmd == "LOGOUT":
                    self.send_response(tag, "OK LOGOUT completed")
                    break

                elif cmd == "CAPABILITY":
                    self.wfile.write(b"* CAPABILITY IMAP4rev1 AUTH=PLAIN\r\n")
                    self.send_response(tag, "OK CAPABILITY completed")

                elif cmd in ("SELECT", "EXAMINE"):
                    folder, _ = parse_mailbox_arg(args)
                    if folder in self.current_folders:
                        self.selected_folder = folder
                        msgs = self.current_folders[folder]
                        count = len(msgs)
                        next_uid = max((m["uid"] for m in msgs), default=0) + 1
                        self.wfile.write(f"* {count} EXISTS\r\n".encode())
                        self.wfile.write(b"* 0 RECENT\r\n")
                        self.wfile.write(b"* FLAGS (\\Seen \\Answered \\Flagged \\Deleted \\Draft)\r\n")
                        self.wfile.write(b"* OK [UIDVALIDITY 1] UIDs valid\r\n")
                        self.wfile.write(f"* OK [UIDNEXT {next_uid}] Predicted next UID\r\n".encode())
                        mode = "READ-ONLY" if cmd == "EXAMINE" else "READ-WRITE"
                        self.send_response(tag, f"OK [{mode}] {cmd} completed")
                    else:
                        self.send_response(tag, "NO [NONEXISTENT] Folder not found")

                elif cmd == "CREATE":
                    folder, _ = parse_mailbox_arg(args)
                    self.current_folders.setdefault(folder, [])
                    self.send_response(tag, "OK CREATE completed")

                elif cmd == "SEARCH":
                    if not self.selected_folder:
                        self.send_response(tag, RESPONSE_SELECT_FIRST)
                        continue
                    literal = self.read_literal(args)
                    seq_nums = self.search(self.current_folders[self.selected_folder], args, literal)
                    self.write_search(seq_nums)
                    self.send_response(tag, "OK SEARCH completed")

                elif cmd == "EXPUNGE":
                    if not self.selected_folder:
                        self.send_response(tag, RESPONSE_SELECT_FIRST)
                        continue
                    msgs = self.current_folders[self.selected_folder]
                    # Report highest sequence numbers first so earlier ones stay valid
                    for seq in range(len(msgs), 0, -1):
                        if "\\Deleted" in msgs[seq - 1]["flags"]:
                            self.wfile.write(f"* {seq} EXPUNGE\r\n".encode())
                    msgs[:] = [m for m in msgs if "\\Deleted" not in m["flags"]]
                    self.send_response(tag, "OK EXPUNGE completed")

                elif cmd in ("FETCH", "STORE"):
                    if not self.selected_folder:
                        self.send_response(tag, RESPONSE_SELECT_FIRST)
                        continue
                    self.sequence_command(tag, cmd, args, by_uid=False)

                elif cmd == "UID":
                    if not self.selected_folder:
                        self.send_response(tag, RESPONSE_SELECT_FIRST)
                        continue
                    sub_parts = args.split(" ", 1)
                    sub_cmd = sub_parts[0].upper()
                    sub_rest = sub_parts[1] if len(sub_parts) > 1 else ""
                    if sub_cmd in ("FETCH", "STORE"):
                        self.sequence_command(tag, sub_cmd, sub_rest, by_uid=True)
                    elif sub_cmd == "SEARCH":
                        msgs = self.current_folders[self.selected_folder]
                        seq_nums = self.search(msgs, sub_rest)
                        self.write_search([msgs[int(s) - 1]["uid"] for s in seq_nums])
                        self.send_response(tag, "OK SEARCH completed")
                    else:
                        self.send_response(tag, "BAD UID command not supported")

                elif cmd == "APPEND":
                    data = self.read_literal(args)
                    if data is None:
                        self.send_response(tag, "BAD APPEND")
                        continue

                    folder, rest = parse_mailbox_arg(args)
                    flags_match = re.match(r"\(([^)]*)\)", rest)
                    flags_set = set(flags_match.group(1).split()) if flags_match else set()

                    if folder in self.current_folders:
                        dest_msgs = self.current_folders[folder]
                        self.server.last_uid[folder] = max(
                            self.server.last_uid.get(folder, 0), max((m["uid"] for m in dest_msgs), default=0)
                        ) + 1
                        dest_msgs.append({"uid": self.server.last_uid[folder], "flags": flags_set, "content": data})
                        self.send_response(tag, "OK APPEND completed")
                    else:
                        self.send_response(tag, "NO [TRYCREATE] Folder not found")

                elif cmd == "NOOP":
                    self.send_response(tag, "OK NOOP")

                else:
                    self.send_response(tag, "BAD Command not recognized")

            except Exception:
                break

    def read_literal(self, args):
        """Reads the ``{n}`` literal announced at the end of a command line, or returns None."""
        match = re.search(r"\{(\d+)\}$", args)
        if not match:
            return None
        self.wfile.write(b"+ Ready\r\n")
        self.wfile.flush()
        return self.rfile.read(int(match.group(1)))

    def search(self, msgs, criteria, literal=None):
        """
        Supports ALL, UNDELETED and BODY (case-insensitive substring). The BODY text is
        either a quoted string or a literal, the way CHARSET UTF-8 searches send it.
        """
        needle = None
        body_match = re.search(r'BODY\s+"((?:[^"\\]|\\.)*)"', criteria, re.IGNORECASE)
        if literal is not None:
            needle = literal.lower()
        elif body_match:
            needle = re.sub(r"\\(.)", r"\1", body_match.group(1)).lower().encode()

        seq_nums = []
        for seq, m in enumerate(msgs, start=1):
            if "UNDELETED" in criteria.upper() and "\\Deleted" in m["flags"]:
                continue
            if needle is not None and needle not in split_message(m["content"])[1].lower():
                continue
            seq_nums.append(seq)
        return seq_nums

    def write_search(self, numbers):
        joined = " ".join(str(n) for n in numbers)
        self.wfile.write(f"* SEARCH {joined}\r\n".encode() if joined else b"* SEARCH\r\n")

    def sequence_command(self, tag, cmd, args, by_uid):
        msgs = self.current_folders[self.selected_folder]
        set_str, _, rest = args.partition(" ")
        try:
            targets = resolve_set(set_str, msgs, by_uid)
        except ValueError:
            self.send_response(tag, f"BAD Invalid sequence set {set_str}")
            return

        if cmd == "FETCH":
            for seq, m in targets:
                self.write_fetch(seq, m, rest.upper(), by_uid)
            self.send_response(tag, "OK FETCH completed")
            return

        # STORE <set> +FLAGS (\Deleted)
        action, _, flags_str = rest.partition(" ")
        action = action.upper()
        flags_list = set(flags_str.strip().strip("()").split())
        for seq, m in targets:
            if action.startswith("+FLAGS"):
                m["flags"].update(flags_list)
            elif action.startswith("-FLAGS"):
                m["flags"].difference_update(flags_list)
            elif action.startswith("FLAGS"):
                m["flags"] = set(flags_list)
            else:
                self.send_response(tag, "BAD STORE")
                return
            if ".SILENT" not in action:
                flag_output = " ".join(sorted(m["flags"]))
                self.wfile.write(f"* {seq} FETCH (FLAGS ({flag_output}))\r\n".encode())
        self.send_response(tag, "OK STORE completed")

    def write_fetch(self, seq, m, opts, by_uid):
        items = []
        if by_uid or "UID" in opts:
            items.append(f"UID {m['uid']}")
        if "FLAGS" in opts:
            items.append(f"FLAGS ({' '.join(sorted(m['flags']))})")
        if "RFC822.SIZE" in opts:
            items.append(f"RFC822.SIZE {len(m['content'])}")

        literal = None
        if "RFC822.HEADER" in opts or "BODY.PEEK[HEADER]" in opts or "BODY[HEADER]" in opts:
            label = "RFC822.HEADER" if "RFC822.HEADER" in opts else "BODY[HEADER]"
            literal = split_message(m["content"])[0]
        elif re.search(r"RFC822(?![.\w])", opts) or "BODY[]" in opts or "BODY.PEEK[]" in opts:
            label = "RFC822" if "RFC822" in opts else "BODY[]"
            literal = m["content"]

        if literal is None:
            self.wfile.write(f"* {seq} FETCH ({' '.join(items)})\r\n".encode())
        else:
            prefix = " ".join(items + [f"{label} {{{len(literal)}}}"])
            self.wfile.write(f"* {seq} FETCH ({prefix}\r\n".encode())
            self.wfile.write(literal)
            self.wfile.write(b")\r\n")
        self.wfile.flush()

    def send_response(self, tag, message):
        self.wfile.write(f"{tag} {message}\r\n".encode())
        self.wfile.flush()


class MockIMAPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, server_address, request_handler_class, initial_folders=None):
        super().__init__(server_address, request_handler_class)
        self.commands = []
        self.fail_commands = set()
        self.last_uid = {}
        self.folders = {}
        if initial_folders:
            for fname, contents in initial_folders.items():
                self.folders[fname] = []
                for i, c in enumerate(contents):
                    if isinstance(c, bytes):
                        self.folders[fname].append({"uid": i + 1, "flags": set(), "content": c})
                    else:
                        self.folders[fname].append({"uid": c["uid"], "flags": set(c.get("flags", ())), "content": c["content"]})
        else:
            self.folders = {"INBOX": []}

    def commands_named(self, name):
        """Recorded command lines starting with ``name`` (e.g. "FETCH", "UID STORE")."""
        name = name.upper()
        return [c for c in self.commands if c.upper().startswith(name + " ") or c.upper() == name]


def start_server_thread(port=0, initial_folders=None):
    """Start a mock server on localhost; port 0 picks a free port. Returns (server, port)."""
    server = MockIMAPServer(("localhost", port), MockIMAPHandler, initial_folders)
    t = threading.Thread(target=server.serve_forever)
    t.daemon = True
    t.start()
    return server, server.server_address[1]
