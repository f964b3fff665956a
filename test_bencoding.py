import bencodepy
import pytest

from bencoding import (
    BencodeDecodeError, BencodeDict, BencodeEncodeError, Cursor, Decoder, Encoder,
    IntState, InvalidKeyError, LengthState, MAX_INT, MIN_INT,
    decode, decode_prefix, encode, int_transition, length_transition,
)


def test_decode_integers():
    assert decode(b'i0e') == 0
    assert decode(b'i42e') == 42
    assert decode(b'i-7e') == -7
    assert decode(b'i9223372036854775807e') == MAX_INT
    assert decode(b'i-9223372036854775808e') == MIN_INT


def test_decode_strings():
    assert decode(b'0:') == b''
    assert decode(b'4:spam') == b'spam'
    assert decode(b'10:0123456789') == b'0123456789'
    # byte strings don't have to be text
    assert decode(b'3:\xfe\xff\x00') == b'\xfe\xff\x00'


def test_decode_lists():
    assert decode(b'le') == ()
    assert decode(b'l4:spam4:eggse') == (b'spam', b'eggs')
    assert decode(b'li1eli2eleee') == (1, (2, ()))


def test_decode_dicts():
    assert decode(b'de') == {}
    assert decode(b'd3:cow3:moo4:spam4:eggse') == {b'cow': b'moo', b'spam': b'eggs'}
    assert decode(b'd4:spaml1:a1:bee') == {b'spam': (b'a', b'b')}


def test_decode_accepts_bytearray():
    assert decode(bytearray(b'i5e')) == 5


def test_decode_non_ascii_key():
    key = 'こんに'.encode('utf-8')
    data = b'd3:abci123e9:' + key + b'23:It means good afternoone'

    value = decode(data)

    assert value[b'abc'] == 123
    assert value[key] == b'It means good afternoon'
    assert len(key) == 9
    assert list(value) == [b'abc', key]
    assert encode(value) == data


@pytest.mark.parametrize('data', [
    b'',
    b'ie',
    b'i08e',
    b'i-0e',
    b'i-e',
    b'i-08e',
    b'i1',
    b'i12a3e',
    b'i 1e',
    b'i9223372036854775808e',
    b'i-9223372036854775809e',
    b'i123456789012345678901234567890e',
    b'1:',
    b'999:short',
    b'02:ab',
    b'1a:x',
    b'4spam',
    b'99999999999999999999:x',
    b'l',
    b'li1e',
    b'l4:spam',
    b'd',
    b'd3:foo',
    b'd3:fooi1e',
    b'di1ei2ee',
    b'dle',
    b'x',
    b'-1',
    b'i1ee',
    b'4:spam4:eggs',
    b'lee',
])
def test_rejects_invalid_bencode(data):
    with pytest.raises(BencodeDecodeError):
        decode(data)


def test_rejects_non_text_key():
    with pytest.raises(InvalidKeyError):
        decode(b'd2:\xff\xfei1ee')


def test_invalid_key_is_a_decode_error():
    assert issubclass(InvalidKeyError, BencodeDecodeError)


def test_error_positions():
    with pytest.raises(BencodeDecodeError) as e:
        decode(b'i08e')
    assert e.value.position == 2

    with pytest.raises(BencodeDecodeError) as e:
        decode(b'li1ei2ex')
    assert e.value.position == 7

    with pytest.raises(BencodeDecodeError, match='Did not consume whole input'):
        decode(b'i1ei2e')

    with pytest.raises(BencodeDecodeError, match='Unexpected end of input'):
        decode(b'5:abc')


def test_deep_nesting():
    # well past python's recursion limit; only compare bytes, since == and repr recurse
    depth = 5000
    lists = b'l' * depth + b'e' * depth
    dicts = b'd1:a' * depth + b'i0e' + b'e' * depth

    assert encode(decode(lists)) == lists
    assert encode(decode(dicts)) == dicts


def test_deep_nesting_unterminated():
    with pytest.raises(BencodeDecodeError, match='Unterminated list') as e:
        decode(b'l' * 5000 + b'e' * 4999)
    assert e.value.position == 0


def test_unterminated_dictionary_position():
    with pytest.raises(BencodeDecodeError, match='Unterminated dictionary') as e:
        decode(b'li1ed1:ai2e')
    assert e.value.position == 4


def test_duplicate_keys_last_wins():
    assert decode(b'd1:ai1e1:ai2ee') == {b'a': 2}


def test_unsorted_input_decodes_sorted():
    value = decode(b'd1:bi1e1:ai2ee')
    assert list(value.keys()) == [b'a', b'b']
    assert encode(value) == b'd1:ai2e1:bi1ee'


def test_decode_prefix_leaves_cursor_after_value():
    cursor = Cursor(b'i1e4:spamled1:ai0ee')

    assert decode_prefix(cursor) == 1
    assert cursor.position == 3
    assert decode_prefix(cursor) == b'spam'
    assert decode_prefix(cursor) == ()
    assert decode_prefix(cursor) == {b'a': 0}
    assert cursor.exhausted

    with pytest.raises(BencodeDecodeError):
        decode_prefix(cursor)


def test_decode_prefix_ignores_what_follows():
    cursor = Cursor(b'4:spamgarbage')
    assert decode_prefix(cursor) == b'spam'
    assert cursor.remaining == len(b'garbage')


def test_decode_prefix_failure_leaves_cursor_mid_value():
    cursor = Cursor(b'li1ei2x')
    with pytest.raises(BencodeDecodeError) as e:
        decode_prefix(cursor)
    assert e.value.position == 6
    assert cursor.position == 6


def test_decode_rejects_text():
    with pytest.raises(TypeError):
        decode('i1e')
    with pytest.raises(TypeError):
        Cursor('i1e')


def test_decoder_class():
    assert Decoder(b'l4:spame').decode() == (b'spam',)


def test_integer_state_machine():
    assert int_transition(IntState.START, ord('-')) is IntState.MINUS
    assert int_transition(IntState.START, ord('0')) is IntState.ZERO
    assert int_transition(IntState.START, ord('7')) is IntState.DIGITS
    assert int_transition(IntState.START, ord('e')) is None
    assert int_transition(IntState.MINUS, ord('0')) is None
    assert int_transition(IntState.MINUS, ord('e')) is None
    assert int_transition(IntState.ZERO, ord('1')) is None
    assert int_transition(IntState.ZERO, ord('e')) is IntState.DONE
    assert int_transition(IntState.DIGITS, ord('0')) is IntState.DIGITS
    assert int_transition(IntState.DIGITS, ord('e')) is IntState.DONE
    assert int_transition(IntState.DIGITS, ord('-')) is None


def test_length_state_machine():
    assert length_transition(LengthState.START, ord('0')) is LengthState.ZERO
    assert length_transition(LengthState.START, ord(':')) is None
    assert length_transition(LengthState.ZERO, ord('0')) is None
    assert length_transition(LengthState.ZERO, ord(':')) is LengthState.DONE
    assert length_transition(LengthState.DIGITS, ord('9')) is LengthState.DIGITS
    assert length_transition(LengthState.DIGITS, ord(':')) is LengthState.DONE


def test_encode_values():
    assert encode(0) == b'i0e'
    assert encode(-42) == b'i-42e'
    assert encode(1234) == b'i1234e'
    assert encode(b'') == b'0:'
    assert encode(b'Hello I am a happy moose') == b'24:Hello I am a happy moose'
    assert encode(b'abc\xfe\xffd') == b'6:abc\xfe\xffd'
    assert encode(bytearray(b'ab')) == b'2:ab'
    assert encode([999, -5, 0, 8675309]) == b'li999ei-5ei0ei8675309ee'
    assert encode((b'happy', b'moose')) == b'l5:happy5:moosee'


def test_encode_sorts_dictionary_keys():
    value = {b'number_3': 3, b'number_1': 1, b'number_2': 2}
    assert encode(value) == b'd8:number_1i1e8:number_2i2e8:number_3i3ee'
    assert Encoder(BencodeDict(value)).encode() == encode(value)


def test_encode_sorts_by_byte_value():
    # uppercase sorts before lowercase, and a prefix before anything longer
    value = {b'b': 1, b'a': 2, b'B': 3, b'ab': 4, b'\xc3\xa9': 5}
    assert encode(value) == b'd1:Bi3e1:ai2e2:abi4e1:bi1e2:\xc3\xa9i5ee'


@pytest.mark.parametrize('value', [
    'text',
    1.5,
    None,
    True,
    MAX_INT + 1,
    MIN_INT - 1,
    {'key': 1},
    [b'ok', object()],
])
def test_encode_rejects_non_values(value):
    with pytest.raises(BencodeEncodeError):
        encode(value)


def test_encode_error_is_a_type_error():
    with pytest.raises(TypeError):
        encode(3.0)


def test_matches_reference_encoder():
    # bencodepy keeps insertion order, so the keys go in already sorted
    value = {
        b'announce': b'http://tracker.example/announce',
        b'info': {
            b'length': -1,
            b'name': b'moose_dance.mkv',
            b'other': [0xdeadbeef, b'woot', {b'a': [], b'z': b''}],
            b'piece length': 262144,
            b'pieces': bytes(range(40)),
        },
    }
    assert encode(value) == bencodepy.encode(value)


def test_sorts_what_reference_encoder_keeps_in_order():
    value = {b'z': 1, b'a': 2}
    assert encode(value) == b'd1:ai2e1:zi1ee'
    assert encode(value) == bencodepy.encode({b'a': 2, b'z': 1})


def test_round_trip():
    values = [
        0,
        MIN_INT,
        b'\x00\xff',
        (),
        (1, b'two', (3,), {b'four': 4}),
        BencodeDict({b'filename': b'moose_dance.mkv', b'part_count': 237,
                     b'other': (0xdeadbeef, b'woot'), b'nested': BencodeDict()}),
    ]
    for value in values:
        assert decode(encode(value)) == value


def test_canonical_idempotence():
    canonical = [
        b'i-3e',
        b'0:',
        b'l5:happy5:moosee',
        b'd8:filename15:moose_dance.mkv4:hash34:0xdeadbeefabadbabecafefoodfee1dead'
        b'5:otherli3735928559e4:woote10:part_counti237ee',
    ]
    for data in canonical:
        assert encode(decode(data)) == data


def test_bencode_dict_is_read_only():
    value = decode(b'd1:ai1ee')
    with pytest.raises(TypeError):
        value[b'b'] = 2


def test_bencode_dict_equality():
    assert BencodeDict({b'a': 1, b'b': 2}) == BencodeDict([(b'b', 2), (b'a', 1)])
    assert BencodeDict({b'a': 1}) != BencodeDict({b'a': 2})
    assert BencodeDict({b'a': (1, 2)}) != BencodeDict({b'a': (2, 1)})


def test_bencode_dict_requires_byte_keys():
    with pytest.raises(TypeError):
        BencodeDict({'a': 1})


if __name__ == "__main__":
    pytest.main([__file__])
