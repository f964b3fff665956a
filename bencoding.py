"""
This module provides classes for encoding and decoding bencoded data.

What is Bencoding?
Bencoding is the encoding used by BitTorrent to storing and transmitting data.

It supports four types of data:
1. Integers: Represented as 'i' followed by the integer value and 'e' to end.
    - i.e i<integer_value>e, for eg, i42e represents the integer 42.
2. Byte Strings: Represented as the length of the string followed by ':' and the string itself.
    - i.e <length>:<string>, for eg, 4:spam represents the string "spam".
3. Lists: Represented as 'l' followed by the bencoded elements and 'e' to end.
    - i.e l<element1><element2>e, for eg, l4:spam4:eggse represents the list ["spam", "eggs"].
4. Dictionaries: Represented as 'd' followed by the bencoded key-value pairs and 'e' to end.
    - i.e d<key1><value1><key2><value2>e, for eg, d3:bar4:spam3:cati42ee represents
    the dictionary {'bar': 'spam', 'cat': 42}.

Decoded values map onto python types like this:
- byte string -> bytes (raw bytes, they don't have to be valid text)
- integer     -> int (signed 64 bit range)
- list        -> tuple
- dictionary  -> BencodeDict (an immutable mapping that always iterates its keys in
                 ascending byte order)

There is exactly one valid encoding for every value, the canonical form. The info hash
of a torrent is computed over the canonical form of the info dictionary, so the decoder
is strict about everything that would allow two encodings of the same value (leading
zeros, negative zero), and the encoder always writes dictionary keys in sorted order.

This module provides two classes: Decoder and Encoder.
- Decoder: Takes a bencoded byte string and decodes it into a Python object.
- Encoder: Takes a Python object and encodes it into a bencoded byte string.
"""
import logging
from collections.abc import Mapping
from enum import Enum

MIN_INT = -2**63
MAX_INT = 2**63 - 1

# 2**63 - 1 has 19 digits, anything longer can't fit
MAX_DIGITS = len(str(MAX_INT))

TOKEN_INTEGER = ord('i')
TOKEN_LIST = ord('l')
TOKEN_DICT = ord('d')
TOKEN_END = ord('e')
TOKEN_MINUS = ord('-')
TOKEN_COLON = ord(':')
TOKEN_ZERO = ord('0')


class BencodeError(Exception):
    pass


class BencodeDecodeError(BencodeError):
    """
    Raised when the input is not valid bencode.
    `position` is the byte offset where decoding went wrong.
    """
    def __init__(self, message: str, position: int):
        super().__init__(f"{message} (at byte {position})")
        self.message = message
        self.position = position


class InvalidKeyError(BencodeDecodeError):
    """
    A dictionary key that is not valid UTF-8. These keys can't be looked up
    by name, so we refuse them outright.
    """


class BencodeEncodeError(BencodeError, TypeError):
    pass


def _is_digit(byte) -> bool:
    return byte is not None and 0x30 <= byte <= 0x39


class BencodeDict(Mapping):
    """
    Immutable dictionary with byte string keys.

    The keys are sorted once, when the dictionary is built, so iterating it always
    yields them in ascending byte order. That's the order the encoder writes them in,
    which is what makes encode(decode(data)) reproduce the original bytes.

    Comparison with other mappings ignores order, like a normal dict.
    """
    __slots__ = ('_items', '_keys')

    def __init__(self, items=()):
        items = dict(items)
        for key in items:
            if not isinstance(key, bytes):
                raise TypeError(f"Dictionary keys must be bytes, got {type(key).__name__}")
        self._items = items
        self._keys = tuple(sorted(items))

    def __getitem__(self, key):
        return self._items[key]

    def __iter__(self):
        return iter(self._keys)

    def __len__(self):
        return len(self._keys)

    def __contains__(self, key):
        return key in self._items

    def __repr__(self):
        pairs = ', '.join(f"{key!r}: {self._items[key]!r}" for key in self._keys)
        return f"BencodeDict({{{pairs}}})"


class Cursor:
    """
    A read position over a byte buffer.

    The decoder only ever looks one byte ahead (peek), and never reads past the end of
    the buffer: running out of data raises a BencodeDecodeError.
    """
    def __init__(self, data, position: int = 0):
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError("Cursor expects bytes, bytearray or memoryview")
        self.data = bytes(data)
        self.position = position

    @property
    def exhausted(self) -> bool:
        return self.position >= len(self.data)

    @property
    def remaining(self) -> int:
        return max(len(self.data) - self.position, 0)

    def peek(self):
        """
        Returns the next byte as an int without consuming it, or None at the end.
        """
        if self.exhausted:
            return None
        return self.data[self.position]

    def advance(self) -> int:
        byte = self.peek()
        if byte is None:
            raise BencodeDecodeError("Unexpected end of input", self.position)
        self.position += 1
        return byte

    def take(self, count: int) -> bytes:
        if count > self.remaining:
            raise BencodeDecodeError(
                f"Unexpected end of input: wanted {count} bytes, {self.remaining} left",
                self.position
            )
        chunk = self.data[self.position:self.position + count]
        self.position += count
        return chunk


class IntState(Enum):
    """
    States of the integer parser, for i<digits>e.

    START  - just read 'i', a digit or '-' has to follow
    MINUS  - read '-', a non zero digit has to follow (no -0, no -01)
    ZERO   - read a lone '0', only 'e' can follow (no leading zeros)
    DIGITS - read a non zero digit, more digits or 'e' can follow
    DONE   - read 'e'
    """
    START = 'start'
    MINUS = 'minus'
    ZERO = 'zero'
    DIGITS = 'digits'
    DONE = 'done'


_INT_EXPECTED = {
    IntState.START: "a digit or '-'",
    IntState.MINUS: "a non-zero digit after '-'",
    IntState.ZERO: "'e' after 0 (leading zeros are not allowed)",
    IntState.DIGITS: "a digit or 'e'",
}


def int_transition(state: IntState, byte: int):
    """
    Returns the state after reading `byte`, or None if `byte` is not allowed in `state`.
    """
    if state is IntState.START:
        if byte == TOKEN_MINUS:
            return IntState.MINUS
        if byte == TOKEN_ZERO:
            return IntState.ZERO
        if _is_digit(byte):
            return IntState.DIGITS
    elif state is IntState.MINUS:
        if _is_digit(byte) and byte != TOKEN_ZERO:
            return IntState.DIGITS
    elif state is IntState.ZERO:
        if byte == TOKEN_END:
            return IntState.DONE
    elif state is IntState.DIGITS:
        if byte == TOKEN_END:
            return IntState.DONE
        if _is_digit(byte):
            return IntState.DIGITS
    return None


class LengthState(Enum):
    """
    States of the byte string length parser, for <digits>:

    START  - nothing read yet, a digit has to follow
    ZERO   - read a lone '0', only ':' can follow
    DIGITS - read a non zero digit, more digits or ':' can follow
    DONE   - read ':'
    """
    START = 'start'
    ZERO = 'zero'
    DIGITS = 'digits'
    DONE = 'done'


_LENGTH_EXPECTED = {
    LengthState.START: "a digit",
    LengthState.ZERO: "':' after 0 (leading zeros are not allowed)",
    LengthState.DIGITS: "a digit or ':'",
}


def length_transition(state: LengthState, byte: int):
    if state is LengthState.START:
        if byte == TOKEN_ZERO:
            return LengthState.ZERO
        if _is_digit(byte):
            return LengthState.DIGITS
    elif state is LengthState.ZERO:
        if byte == TOKEN_COLON:
            return LengthState.DONE
    elif state is LengthState.DIGITS:
        if byte == TOKEN_COLON:
            return LengthState.DONE
        if _is_digit(byte):
            return LengthState.DIGITS
    return None


class _Container:
    """
    A list or dictionary the decoder has opened but not closed yet.
    For dictionaries, `key` holds the key whose value is being decoded.
    """
    __slots__ = ('start', 'items', 'key', 'key_position')

    def __init__(self, start: int, items):
        self.start = start
        self.items = items
        self.key = None
        self.key_position = None

    @property
    def is_dict(self) -> bool:
        return isinstance(self.items, dict)

    @property
    def kind(self) -> str:
        return "dictionary" if self.is_dict else "list"

    def add(self, value):
        if not self.is_dict:
            self.items.append(value)
            return
        if self.key in self.items:
            # last one wins
            logging.debug(f"Duplicate dictionary key {self.key!r} at byte {self.key_position}")
        self.items[self.key] = value
        self.key = None

    def close(self):
        if self.is_dict:
            return BencodeDict(self.items)
        return tuple(self.items)


class Decoder:
    """
    This class is used to decode bencoded data.

    Decoding is a single left to right pass over the input with one byte of lookahead.
    The first problem found aborts the whole decode with a BencodeDecodeError.

    Lists and dictionaries that are still open are kept on an explicit stack instead of
    the python call stack, so there is no limit on how deeply values can nest.

    `data` can be raw bytes or a Cursor; with a Cursor, decode_next() leaves it right
    after the decoded value so the caller can keep reading from the same buffer.
    """
    def __init__(self, data):
        self.cursor = data if isinstance(data, Cursor) else Cursor(data)

    def decode(self):
        """
        Decodes the whole input, which has to be exactly one value.
        """
        value = self.decode_next()
        if not self.cursor.exhausted:
            raise BencodeDecodeError(
                f"Did not consume whole input, {self.cursor.remaining} trailing bytes",
                self.cursor.position
            )
        return value

    def decode_next(self):
        """
        Decodes one value starting at the cursor.
        """
        stack = []
        while True:
            container = stack[-1] if stack else None
            position = self.cursor.position
            byte = self.cursor.peek()

            if container is not None and byte is None:
                raise BencodeDecodeError(f"Unterminated {container.kind}", container.start)

            if container is not None and container.key is None and byte == TOKEN_END:
                self.cursor.advance()
                stack.pop()
                value = container.close()
            elif container is not None and container.is_dict and container.key is None:
                container.key = self._decode_key()
                container.key_position = position
                continue
            elif byte == TOKEN_LIST:
                self.cursor.advance()
                stack.append(_Container(position, []))
                continue
            elif byte == TOKEN_DICT:
                self.cursor.advance()
                stack.append(_Container(position, {}))
                continue
            else:
                value = self._decode_scalar()

            if not stack:
                return value
            stack[-1].add(value)

    def _decode_scalar(self):
        byte = self.cursor.peek()
        if byte is None:
            raise BencodeDecodeError("Unexpected end of input, expected a value", self.cursor.position)
        if byte == TOKEN_INTEGER:
            return self._decode_int()
        if _is_digit(byte):
            return self._decode_string()
        raise BencodeDecodeError(f"Unexpected byte {bytes([byte])!r}", self.cursor.position)

    def _decode_key(self) -> bytes:
        position = self.cursor.position
        byte = self.cursor.peek()
        if not _is_digit(byte):
            raise BencodeDecodeError(
                f"Dictionary key must be a byte string, got {bytes([byte])!r}",
                position
            )
        key = self._decode_string()
        try:
            key.decode('utf-8')
        except UnicodeDecodeError:
            raise InvalidKeyError(f"Dictionary key {key!r} is not valid UTF-8", position) from None
        return key

    def _decode_int(self) -> int:
        start = self.cursor.position
        self.cursor.advance()  # 'i'
        digits_start = self.cursor.position
        state = IntState.START
        while state is not IntState.DONE:
            position = self.cursor.position
            byte = self.cursor.peek()
            if byte is None:
                raise BencodeDecodeError(
                    f"Unexpected end of input in integer, expected {_INT_EXPECTED[state]}",
                    position
                )
            next_state = int_transition(state, byte)
            if next_state is None:
                raise BencodeDecodeError(
                    f"Invalid integer: got {bytes([byte])!r}, expected {_INT_EXPECTED[state]}",
                    position
                )
            self.cursor.advance()
            state = next_state
            if self.cursor.position - digits_start > MAX_DIGITS + 2:
                raise BencodeDecodeError("Integer does not fit in 64 bits", start)

        value = int(self.cursor.data[digits_start:self.cursor.position - 1])
        if not MIN_INT <= value <= MAX_INT:
            raise BencodeDecodeError("Integer does not fit in 64 bits", start)
        return value

    def _decode_length(self) -> int:
        start = self.cursor.position
        state = LengthState.START
        while state is not LengthState.DONE:
            position = self.cursor.position
            byte = self.cursor.peek()
            if byte is None:
                raise BencodeDecodeError(
                    f"Unexpected end of input in string length, expected {_LENGTH_EXPECTED[state]}",
                    position
                )
            next_state = length_transition(state, byte)
            if next_state is None:
                raise BencodeDecodeError(
                    f"Invalid string length: got {bytes([byte])!r}, expected {_LENGTH_EXPECTED[state]}",
                    position
                )
            self.cursor.advance()
            state = next_state
            if self.cursor.position - start > MAX_DIGITS + 1:
                raise BencodeDecodeError("String length does not fit in 64 bits", start)

        length = int(self.cursor.data[start:self.cursor.position - 1])
        if length > MAX_INT:
            raise BencodeDecodeError("String length does not fit in 64 bits", start)
        return length

    def _decode_string(self) -> bytes:
        length = self._decode_length()
        return self.cursor.take(length)


# marks where a list or dictionary ends on the encoder's work stack
_END = object()


class Encoder:
    """
    This class is used to encode data into bencoded format.

    Output is always canonical: dictionary keys in ascending byte order, integers
    without leading zeros. Plain dicts, lists and bytearrays are accepted too, so
    hand built values encode the same way decoded ones do.

    Like the decoder, it works from an explicit stack, so deeply nested values
    encode fine.
    """
    def __init__(self, data):
        self.data = data

    def encode(self) -> bytes:
        out = bytearray()
        pending = [self.data]
        while pending:
            value = pending.pop()
            if value is _END:
                out += b'e'
            # bool is an int subclass, but it isn't a bencode value
            elif isinstance(value, bool):
                raise BencodeEncodeError("Cannot bencode a bool")
            elif isinstance(value, int):
                if not MIN_INT <= value <= MAX_INT:
                    raise BencodeEncodeError(f"Integer {value} does not fit in 64 bits")
                out += b'i%de' % value
            elif isinstance(value, (bytes, bytearray)):
                out += b'%d:' % len(value)
                out += value
            elif isinstance(value, (list, tuple)):
                out += b'l'
                pending.append(_END)
                pending.extend(reversed(value))
            elif isinstance(value, Mapping):
                keys = list(value)
                for key in keys:
                    if not isinstance(key, bytes):
                        raise BencodeEncodeError(f"Dictionary keys must be bytes, got {type(key).__name__}")
                if not isinstance(value, BencodeDict):
                    keys.sort()
                out += b'd'
                pending.append(_END)
                # pushed back to front, so the first key comes off the stack first
                for key in reversed(keys):
                    pending.append(value[key])
                    pending.append(key)
            else:
                raise BencodeEncodeError(f"Cannot bencode object of type {type(value).__name__}")
        return bytes(out)


def decode(data):
    """Decodes bencoded bytes, the input must hold exactly one value."""
    return Decoder(data).decode()


def decode_prefix(cursor: Cursor):
    """
    Decodes one value at `cursor` and leaves the cursor right after it.
    Whatever follows the value is not looked at.

    If decoding fails, the cursor is left wherever the error was found, part way
    through the value, and can't be used to carry on reading the stream.

    The cursor itself only takes bytes, bytearray or memoryview: building one from
    a str raises TypeError, not BencodeDecodeError.
    """
    return Decoder(cursor).decode_next()


def encode(value) -> bytes:
    return Encoder(value).encode()
