"""Decoding of raw terminal input into the key set the recorder understands."""

from enum import Enum
from typing import List, Optional


class KeyKind(str, Enum):
    """Keys interpreted while capturing a command line."""

    CHAR = "char"
    LEFT = "left"
    RIGHT = "right"
    BACKSPACE = "backspace"
    DELETE = "delete"
    LINE_START = "line_start"
    LINE_END = "line_end"
    SUBMIT = "submit"
    END_OF_INPUT = "end_of_input"
    INTERRUPT = "interrupt"
    UNSUPPORTED = "unsupported"


class Key:
    """A decoded key press together with the bytes that produced it."""

    __slots__ = ("kind", "char", "raw")

    def __init__(self, kind: KeyKind, raw: bytes, char: Optional[str] = None):
        self.kind = kind
        self.raw = raw
        self.char = char

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return (self.kind, self.raw, self.char) == (other.kind, other.raw, other.char)

    def __repr__(self) -> str:
        if self.kind == KeyKind.CHAR:
            return f"Key(char={self.char!r})"
        return f"Key({self.kind.value}, raw={self.raw!r})"


CONTROL_KEYS = {
    0x01: KeyKind.LINE_START,  # Ctrl-A
    0x03: KeyKind.INTERRUPT,  # Ctrl-C
    0x04: KeyKind.END_OF_INPUT,  # Ctrl-D
    0x05: KeyKind.LINE_END,  # Ctrl-E
    0x08: KeyKind.BACKSPACE,  # Ctrl-H
    0x0A: KeyKind.SUBMIT,
    0x0D: KeyKind.SUBMIT,
    0x7F: KeyKind.BACKSPACE,
}

ESCAPE_SEQUENCES = {
    b"\x1b[D": KeyKind.LEFT,
    b"\x1bOD": KeyKind.LEFT,
    b"\x1b[C": KeyKind.RIGHT,
    b"\x1bOC": KeyKind.RIGHT,
    b"\x1b[3~": KeyKind.DELETE,
    b"\x1b[H": KeyKind.LINE_START,
    b"\x1bOH": KeyKind.LINE_START,
    b"\x1b[1~": KeyKind.LINE_START,
    b"\x1b[F": KeyKind.LINE_END,
    b"\x1bOF": KeyKind.LINE_END,
    b"\x1b[4~": KeyKind.LINE_END,
}

# Shell-side equivalents, so the line the shell sees always equals the captured buffer
CANONICAL_BYTES = {
    KeyKind.LEFT: b"\x1b[D",
    KeyKind.RIGHT: b"\x1b[C",
    KeyKind.BACKSPACE: b"\x7f",
    KeyKind.DELETE: b"\x1b[3~",
    KeyKind.LINE_START: b"\x01",
    KeyKind.LINE_END: b"\x05",
    KeyKind.SUBMIT: b"\r",
    KeyKind.END_OF_INPUT: b"\x04",
    KeyKind.INTERRUPT: b"\x03",
}


class KeyDecoder:
    """
    Incremental decoder for raw terminal input.

    Escape sequences and multi-byte UTF-8 characters may be split across
    reads; incomplete tails are kept until the next ``feed``.
    """

    def __init__(self):
        self._pending = b""

    def feed(self, data: bytes) -> List[Key]:
        buffer = self._pending + data
        self._pending = b""
        keys: List[Key] = []
        pos = 0

        while pos < len(buffer):
            byte = buffer[pos]

            if byte == 0x1B:
                length = _escape_length(buffer, pos)
                if length is None:
                    self._pending = buffer[pos:]
                    break
                raw = buffer[pos:pos + length]
                keys.append(Key(ESCAPE_SEQUENCES.get(raw, KeyKind.UNSUPPORTED), raw))
                pos += length
                continue

            if byte in CONTROL_KEYS:
                keys.append(Key(CONTROL_KEYS[byte], bytes([byte])))
                pos += 1
                continue

            if byte < 0x20:
                keys.append(Key(KeyKind.UNSUPPORTED, bytes([byte])))
                pos += 1
                continue

            length = _utf8_length(byte)
            if pos + length > len(buffer):
                self._pending = buffer[pos:]
                break
            raw = buffer[pos:pos + length]
            try:
                keys.append(Key(KeyKind.CHAR, raw, raw.decode("utf-8")))
            except UnicodeDecodeError:
                keys.append(Key(KeyKind.UNSUPPORTED, raw))
            pos += length

        return keys

    def flush(self) -> List[Key]:
        """Return whatever incomplete input is buffered as a single unsupported key."""
        if not self._pending:
            return []
        raw, self._pending = self._pending, b""
        return [Key(KeyKind.UNSUPPORTED, raw)]


def _escape_length(buffer: bytes, pos: int) -> Optional[int]:
    """Length of the escape sequence at pos, or None if it is incomplete."""
    if pos + 1 >= len(buffer):
        return None

    introducer = buffer[pos + 1]
    if introducer == ord("["):
        # CSI: parameters and intermediates, then a final byte in 0x40-0x7E
        end = pos + 2
        while end < len(buffer):
            if 0x40 <= buffer[end] <= 0x7E:
                return end - pos + 1
            end += 1
        return None
    if introducer == ord("O"):
        if pos + 2 >= len(buffer):
            return None
        return 3
    # Alt-modified key or a bare escape followed by something else
    return 2


def _utf8_length(first_byte: int) -> int:
    if first_byte < 0x80:
        return 1
    if first_byte >> 5 == 0b110:
        return 2
    if first_byte >> 4 == 0b1110:
        return 3
    if first_byte >> 3 == 0b11110:
        return 4
    return 1
