"""
Control protocol parsing and command building.

Replies from the daemon are line oriented. Every line starts with a
three-digit status code followed by a separator:

- ``250 OK``            final line of a reply (space)
- ``250-key=value``     intermediate single-line value (dash)
- ``250+key=``          start of a multi-line data section (plus); the data
                        runs until a line holding a single ``.`` or, for
                        daemons that omit the dot, until the final line

Commands are single lines terminated by CRLF.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .enums import ControlErrorCode
from .exceptions import ProtocolParseError

CRLF = "\r\n"

AUTH_REQUIRED_STATUS = 515
UNRECOGNIZED_ENTITY_STATUS = 552

_STATUS_PREFIX = re.compile(r"^(\d{3})([ +-]|$)")


@dataclass
class Response:
    """A parsed control-port reply."""

    status_code: int
    data: str
    raw: str

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_auth_required(self) -> bool:
        return self.status_code == AUTH_REQUIRED_STATUS

    @property
    def first_line(self) -> str:
        lines = self.raw.splitlines()
        return lines[0] if lines else ""

    def get_value(self, key: str) -> Optional[str]:
        """Return the single-line value for key, if the reply carries one."""
        return get_value(self.raw, key)

    def get_section(self, key: str) -> Optional[list[str]]:
        """Return the lines of the data section for key, if present."""
        return extract_data_section(self.raw, key)


def parse_status_code(line: str) -> int:
    """
    Parse the status code at the start of a reply line.

    Raises:
        ProtocolParseError: If the line does not start with three digits
            followed by a separator or end of line
    """
    match = _STATUS_PREFIX.match(line.strip())
    if match is None:
        raise ProtocolParseError(
            code=ControlErrorCode.PARSE_ERROR.value,
            message=f"Reply line has no status code: {line[:80]!r}",
            details={"line": line[:200]},
        )
    return int(match.group(1))


def parse_response(text: str) -> Response:
    """
    Parse a complete reply into status code and data payload.

    The status code is taken from the first line; data is every line after
    it, newline-joined.

    Raises:
        ProtocolParseError: If the reply is empty or has no status code
    """
    lines = text.splitlines()
    while lines and not lines[0].strip():
        lines.pop(0)

    if not lines:
        raise ProtocolParseError(
            code=ControlErrorCode.PARSE_ERROR.value,
            message="Empty reply from control port",
        )

    status_code = parse_status_code(lines[0])
    return Response(
        status_code=status_code,
        data="\n".join(lines[1:]),
        raw=text,
    )


def is_final_line(line: str) -> bool:
    """True for a reply's closing line (``NNN`` followed by a space or nothing)."""
    match = _STATUS_PREFIX.match(line)
    return match is not None and match.group(2) in (" ", "")


def _closes_data(line: str, status: str) -> bool:
    # Rows may begin with three digits (circuit ids), so only the dot or
    # the section's own "NNN OK" ends a data section.
    return line == "." or line == f"{status} OK"


def reply_complete(text: str) -> bool:
    """
    Check whether a buffer holds a whole reply.

    Only lines terminated by a newline are considered; data-section lines
    are skipped until the closing dot.
    """
    if "\n" not in text:
        return False

    complete_lines = text.split("\n")[:-1]
    data_status: Optional[str] = None

    for raw_line in complete_lines:
        line = raw_line.rstrip("\r")
        if data_status is not None:
            if line == ".":
                data_status = None
            elif _closes_data(line, data_status):
                return True
            continue

        match = _STATUS_PREFIX.match(line)
        if match is None:
            continue
        if match.group(2) == "+":
            data_status = match.group(1)
        elif match.group(2) in (" ", ""):
            return True

    return False


def extract_data_section(text: str, key: str) -> Optional[list[str]]:
    """
    Return the lines of a ``NNN+key=`` data section.

    A value on the marker line itself counts as the first row. Collection
    stops at a ``.`` line or at the closing ``NNN OK``. Returns None when the
    reply has no such section.
    """
    marker = re.compile(r"^(\d{3})\+" + re.escape(key) + r"=(.*)$")
    rows: Optional[list[str]] = None
    status = ""

    for raw_line in text.splitlines():
        line = raw_line.rstrip("\r")
        if rows is None:
            match = marker.match(line)
            if match:
                status = match.group(1)
                rows = []
                if match.group(2).strip():
                    rows.append(match.group(2))
            continue

        if _closes_data(line, status):
            break
        rows.append(line)

    return rows


def get_value(text: str, key: str) -> Optional[str]:
    """
    Return the value of a single-line ``NNN-key=value`` or ``NNN key=value``.

    A bare ``NNN key`` line (a config option with no value) yields "".
    """
    pattern = re.compile(r"^\d{3}[ -]" + re.escape(key) + r"(?:=(.*))?$")
    for raw_line in text.splitlines():
        match = pattern.match(raw_line.rstrip("\r"))
        if match:
            return match.group(1) or ""
    return None


def build_authenticate(cookie_hex: Optional[str] = None) -> str:
    """Build AUTHENTICATE, with a hex cookie or bare for null auth."""
    if cookie_hex:
        return f"AUTHENTICATE {cookie_hex}{CRLF}"
    return f"AUTHENTICATE{CRLF}"


def build_getinfo(key: str) -> str:
    return f"GETINFO {key}{CRLF}"


def build_signal(name: str = "NEWNYM") -> str:
    return f"SIGNAL {name}{CRLF}"


def build_setconf(key: str, value: str) -> str:
    return f"SETCONF {key}={value}{CRLF}"


def build_getconf(key: str) -> str:
    return f"GETCONF {key}{CRLF}"
