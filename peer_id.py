import random

CLIENT_ID = "PC"
VERSION = "0001"
PEER_ID_LENGTH = 20

ALPHABET = 'abcdefghijklmnopqrstuvwxyz0123456789'


def generate_peer_id(client_id: str = CLIENT_ID, version: str = VERSION) -> bytes:
    """
    This function is used to generate a unique peer Id.
    The peer ID is a 20-byte identifier for this client, sent to trackers and peers.

    We are using the Azureus style format for the peer ID:
    - '-' followed by a client identifier, e.g. "PC" (personal computer).
    - A version number, e.g. "0001", and another '-'.
    - Random alphanumeric characters for the rest of the 20 bytes.

    A new id is generated on each call, the caller keeps it for as long as it needs
    to stay the same.

    reference: https://wiki.theory.org/BitTorrentSpecification#peer_id
    """
    prefix = f"-{client_id}{version}-"
    if len(prefix) > PEER_ID_LENGTH:
        raise ValueError(f"Peer id prefix {prefix!r} is longer than {PEER_ID_LENGTH} bytes")
    random_string = ''.join(random.choices(ALPHABET, k=PEER_ID_LENGTH - len(prefix)))
    return f"{prefix}{random_string}".encode('utf-8')
