from hashlib import sha1
from collections import namedtuple
from collections.abc import Mapping
import logging
from bencoding import Decoder, Encoder

# Every piece checksum is a SHA1 digest
HASH_LENGTH = 20

# base path of single file torrents, the file goes straight into the download directory
CURRENT_DIRECTORY = "."

# The keys a file entry in a multi-file torrent may have. md5sum is allowed but not used.
FILE_KEYS = (b'length', b'md5sum', b'path')


# This represents a single file in the torrent.
# path is a tuple of path segments, relative to the torrent's base path.
TorrentFile = namedtuple('TorrentFile', ['path', 'length'])


class TorrentError(Exception):
    """
    Base class for torrents that decode fine but don't describe a usable torrent.
    `field` names the offending field, e.g. 'info.piece length'.
    """
    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class SchemaError(TorrentError):
    """A required field is missing, or a field has the wrong type."""


class ConsistencyError(TorrentError):
    """Fields are well typed, but their values don't make sense (together)."""


_KINDS = {
    'dictionary': Mapping,
    'integer': int,
    'byte string': bytes,
    'list': (list, tuple),
}


def _field_name(parent: str, key: bytes) -> str:
    if isinstance(key, bytes):
        key = key.decode('utf-8', 'replace')
    return f"{parent}.{key}" if parent else key


def _kind_of(value) -> str:
    for kind, types in _KINDS.items():
        if isinstance(value, types) and not isinstance(value, bool):
            return kind
    return type(value).__name__


def _field(d, key: bytes, kind: str, parent: str = '', optional: bool = False):
    """
    Looks up `key` in `d` and checks that it holds a value of the given kind.
    Missing optional fields return None.
    """
    name = _field_name(parent, key)
    if key not in d:
        if optional:
            return None
        raise SchemaError(f"Missing required field '{name}'", name)

    value = d[key]
    if _kind_of(value) != kind:
        raise SchemaError(f"Field '{name}' must be a {kind}, got {_kind_of(value)}", name)
    return value


def _text(value, name: str) -> str:
    if not isinstance(value, bytes):
        raise SchemaError(f"Field '{name}' must be a byte string, got {_kind_of(value)}", name)
    try:
        return value.decode('utf-8')
    except UnicodeDecodeError:
        raise SchemaError(f"Field '{name}' is not valid UTF-8 text", name) from None


def _text_field(d, key: bytes, parent: str = '', optional: bool = False):
    value = _field(d, key, 'byte string', parent, optional)
    if value is None:
        return None
    return _text(value, _field_name(parent, key))


def _positive(value: int, name: str) -> int:
    if value <= 0:
        raise ConsistencyError(f"Field '{name}' must be positive, got {value}", name)
    return value


def _split_pieces(data: bytes) -> tuple:
    """
    The info pieces is a string containing the SHA1 hashes of each piece in the torrent.
    Each hash is 20 bytes long, so the length of the pieces string has to be a multiple
    of 20.
    """
    if len(data) % HASH_LENGTH != 0:
        raise ConsistencyError(
            f"'info.pieces' must be a multiple of {HASH_LENGTH} bytes, got {len(data)}",
            'info.pieces'
        )
    return tuple(data[offset:offset + HASH_LENGTH] for offset in range(0, len(data), HASH_LENGTH))


def _extract_files(files) -> tuple:
    """
    Reads the 'files' list of a multi-file torrent. Each entry looks like:
        {path: ["subdir", "file1.txt"], length: 100}
    Unknown keys in an entry are rejected.
    """
    if not files:
        raise ConsistencyError("'info.files' must not be empty", 'info.files')

    out = []
    for index, entry in enumerate(files):
        where = f"info.files[{index}]"
        if not isinstance(entry, Mapping):
            raise SchemaError(f"'{where}' must be a dictionary, got {_kind_of(entry)}", where)

        for key in entry:
            if key not in FILE_KEYS:
                name = _field_name(where, key)
                raise SchemaError(f"Unexpected field '{name}'", name)
        if b'md5sum' in entry:
            logging.debug(f"Ignoring md5sum of {where}")

        segments = _field(entry, b'path', 'list', where)
        if not segments:
            raise ConsistencyError(f"'{where}.path' must not be empty", f"{where}.path")
        path = tuple(_text(segment, f"{where}.path[{i}]") for i, segment in enumerate(segments))

        length = _positive(_field(entry, b'length', 'integer', where), f"{where}.length")
        out.append(TorrentFile(path=path, length=length))

    return tuple(out)


def _resolve_layout(info, name: str):
    """
    A torrent is either single-file (info has 'length') or multi-file (info has 'files').
    Returns (files, base_path).
    """
    has_length = b'length' in info
    has_files = b'files' in info

    if has_length and has_files:
        raise SchemaError("Cannot have both a 'length' field and a 'files' field in info", 'info')
    if not has_length and not has_files:
        raise SchemaError("Need a 'length' or a 'files' field in info, cannot be missing both", 'info')

    if has_length:
        length = _positive(_field(info, b'length', 'integer', 'info'), 'info.length')
        logging.debug(f"Single-file torrent '{name}', {length} bytes")
        return (TorrentFile(path=(name,), length=length),), CURRENT_DIRECTORY

    files = _extract_files(_field(info, b'files', 'list', 'info'))
    logging.debug(f"Multi-file torrent '{name}' with {len(files)} files")
    return files, name


def _extract_announce_list(meta_info, announce: str) -> tuple:
    """
    announce-list is a list of tiers, each tier a list of tracker URLs. Without it,
    the torrent has a single tier holding just the announce URL.
    """
    tiers = _field(meta_info, b'announce-list', 'list', optional=True)
    if tiers is None:
        return ((announce,),)
    if not tiers:
        raise ConsistencyError("'announce-list' must not be empty", 'announce-list')

    out = []
    for index, tier in enumerate(tiers):
        where = f"announce-list[{index}]"
        if _kind_of(tier) != 'list':
            raise SchemaError(f"'{where}' must be a list, got {_kind_of(tier)}", where)
        if not tier:
            raise ConsistencyError(f"'{where}' must not be empty", where)
        out.append(tuple(_text(url, f"{where}[{i}]") for i, url in enumerate(tier)))
    return tuple(out)


def _check_piece_count(pieces: tuple, piece_length: int, files: tuple):
    """
    The checksums have to cover every byte of content, and every piece but the last
    has to start inside it. When the total is an exact multiple of the piece length,
    one extra checksum for an empty final piece is therefore accepted.
    """
    total = sum(f.length for f in files)
    count = len(pieces)
    if count * piece_length < total:
        expected = -(-total // piece_length)
        message = (f"Not enough piece checksums for {total} bytes in pieces of {piece_length}: "
                   f"expected {expected}, got {count}")
    elif (count - 1) * piece_length > total:
        message = (f"Too many piece checksums for {total} bytes in pieces of {piece_length}: "
                   f"expected at most {total // piece_length + 1}, got {count}")
    else:
        return
    logging.warning(message)
    raise ConsistencyError(message, 'info.pieces')


def extract(meta_info) -> 'Torrent':
    """
    Builds a Torrent from a decoded .torrent file.

    Raises SchemaError when the structure is wrong (missing fields, wrong types,
    unknown keys in file entries) and ConsistencyError when the values don't add up.
    The first problem found is raised.
    """
    if not isinstance(meta_info, Mapping):
        raise SchemaError(f"Torrent files must have a dictionary at the root, got {_kind_of(meta_info)}")

    # Fields which must exist
    info = _field(meta_info, b'info', 'dictionary')
    name = _text_field(info, b'name', 'info')
    piece_length = _positive(_field(info, b'piece length', 'integer', 'info'), 'info.piece length')
    pieces = _split_pieces(_field(info, b'pieces', 'byte string', 'info'))
    announce = _text_field(meta_info, b'announce')

    # Fields which might exist
    announce_list = _extract_announce_list(meta_info, announce)
    creation_date = _field(meta_info, b'creation date', 'integer', optional=True)
    comment = _text_field(meta_info, b'comment', optional=True)
    created_by = _text_field(meta_info, b'created by', optional=True)
    private = _field(info, b'private', 'integer', 'info', optional=True)

    files, base_path = _resolve_layout(info, name)
    _check_piece_count(pieces, piece_length, files)

    # The hash is over the info dictionary exactly as it was decoded, including
    # fields we don't extract (md5sum, private, anything unknown)
    info_hash = sha1(Encoder(info).encode()).digest()
    logging.debug(f"Info hash of '{name}': {info_hash.hex()}")

    return Torrent(
        name=name,
        announce_list=announce_list,
        base_path=base_path,
        piece_length=piece_length,
        pieces=pieces,
        files=files,
        info_hash=info_hash,
        creation_date=creation_date,
        comment=comment,
        created_by=created_by,
        private=bool(private),
        multi_file=b'files' in info,
    )


class Torrent:
    """
    This class represents the metadata of a torrent file.

    It is built by extract() from a decoded torrent (or by from_bytes / from_file, which
    decode first), after every field has been validated. It's read only, and holds no
    reference to the decoded data it came from.

    The info hash identifies the torrent. It is the SHA1 digest of the bencoded info
    dictionary, and it is what trackers and other peers use to agree on which torrent
    we are talking about.
    """
    __slots__ = ('_name', '_announce_list', '_base_path', '_piece_length', '_pieces',
                 '_files', '_info_hash', '_creation_date', '_comment', '_created_by', '_private', '_multi_file')

    def __init__(self, name, announce_list, base_path, piece_length, pieces, files, info_hash,
                 creation_date=None, comment=None, created_by=None, private=False,
                 multi_file=False):
        self._name = name
        self._announce_list = tuple(tuple(tier) for tier in announce_list)
        self._base_path = base_path
        self._piece_length = piece_length
        self._pieces = tuple(pieces)
        self._files = tuple(files)
        self._info_hash = info_hash
        self._creation_date = creation_date
        self._comment = comment
        self._created_by = created_by
        self._private = private
        self._multi_file = multi_file

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Torrent':
        return extract(Decoder(data).decode())

    @classmethod
    def from_file(cls, filename) -> 'Torrent':
        with open(filename, 'rb') as f:
            meta_info = f.read()
        logging.info(f"Read {len(meta_info)} bytes from {filename}")
        return cls.from_bytes(meta_info)

    @property
    def name(self) -> str:
        return self._name

    @property
    def announce_list(self) -> tuple:
        """
        Tiers of tracker URLs. A client tries every URL in a tier before moving on to the
        next tier. There is always at least one tier and no tier is empty.
        """
        return self._announce_list

    @property
    def announce(self) -> str:
        """
        Returns the first announce URL of the torrent.
        The announce URL is used by the torrent client to connect to the tracker.
        """
        return self._announce_list[0][0]

    @property
    def base_path(self) -> str:
        """
        Directory the files are stored under: the torrent name for multi-file torrents,
        CURRENT_DIRECTORY for single file ones.
        """
        return self._base_path

    @property
    def piece_length(self) -> int:
        """
        return the length of each piece in the torrent in bytes.
        """
        return self._piece_length

    @property
    def pieces(self) -> tuple:
        """
        The 20 byte SHA1 checksum of every piece, in piece order.
        """
        return self._pieces

    @property
    def files(self) -> tuple:
        return self._files

    @property
    def info_hash(self) -> bytes:
        return self._info_hash

    @property
    def info_hash_hex(self) -> str:
        return self._info_hash.hex()

    @property
    def creation_date(self):
        """
        Creation time in seconds since the epoch, or None if the torrent doesn't say.
        """
        return self._creation_date

    @property
    def comment(self):
        return self._comment

    @property
    def created_by(self):
        return self._created_by

    @property
    def private(self) -> bool:
        return self._private

    @property
    def multi_file(self) -> bool:
        """
        Checks if the torrent is a multi-file torrent.
        """
        return self._multi_file

    @property
    def total_size(self) -> int:
        """
        returns the total size of the torrent in bytes.
        """
        return sum(f.length for f in self._files)

    @property
    def piece_count(self) -> int:
        return len(self._pieces)

    def piece_size(self, index: int) -> int:
        """
        Size of the piece at `index` in bytes. Every piece is piece_length long,
        except the last one which holds whatever is left, possibly nothing.
        """
        if not 0 <= index < self.piece_count:
            raise IndexError(f"Piece index {index} out of range, torrent has {self.piece_count} pieces")
        if index == self.piece_count - 1:
            return self.total_size - self._piece_length * index
        return self._piece_length

    @property
    def output_file(self):
        """
        Returns the name of the output file (or directory) for the torrent.
        """
        return self._name

    def __repr__(self):
        return f"Torrent(name={self._name!r}, info_hash={self.info_hash_hex})"

    def __str__(self):
        """
        Returns a string representation of the torrent file.
        This includes the name, file count, total length, announce URL, and info hash.
        """
        return 'Name: {0}\n' \
               'Files: {1}\n' \
               'Total length: {2}\n' \
               'Announce URL: {3}\n' \
               'Hash: {4}'.format(self._name,
                                  len(self._files),
                                  self.total_size,
                                  self.announce,
                                  self.info_hash_hex)
