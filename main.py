import sys
import logging
from bencoding import BencodeError
from torrent import Torrent, TorrentError


def main(torrent_file):
    logging.basicConfig(level=logging.INFO)

    try:
        torrent = Torrent.from_file(torrent_file)
    except OSError as e:
        logging.error(f"Could not read {torrent_file}: {e}")
        return 1
    except BencodeError as e:
        logging.error(f"{torrent_file} is not valid bencode: {e}")
        return 1
    except TorrentError as e:
        logging.error(f"{torrent_file} is not a valid torrent: {e}")
        return 1

    logging.info(f"Loaded torrent:\n{torrent}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1] if len(sys.argv) > 1 else "./files/example.torrent"))
