import pytest

from errors import FormatError
from peers.descriptor import build, format, parse
from peers.models import ConnectionDescriptor


def test_parse_connection_string():
    descriptor = parse("127.0.0.1:9000:nodeABC")
    assert descriptor == ConnectionDescriptor(host="127.0.0.1", port=9000, peer_id="nodeABC")


def test_format_is_canonical():
    descriptor = ConnectionDescriptor(host="192.168.1.20", port=8765, peer_id="abcdef0123")
    assert format(descriptor) == "192.168.1.20:8765:abcdef0123"


@pytest.mark.parametrize(
    "text",
    ["127.0.0.1:9000:nodeABC", "laptop.local:1:x", "10.0.0.5:65535:deadbeef"],
)
def test_canonical_strings_survive_parse_and_format(text):
    assert format(parse(text)) == text


@pytest.mark.parametrize(
    "text",
    [" 127.0.0.1:9000:abc", "127.0.0.1:9000:abc\n", "host : 80 : peer", "h: 80:p"],
)
def test_whitespace_around_fields_is_rejected(text):
    with pytest.raises(FormatError):
        parse(text)


def test_build_validates_fields():
    assert build("10.0.0.1", 8765, "p1").port == 8765
    with pytest.raises(FormatError):
        build("", 8765, "p1")


@pytest.mark.parametrize(
    "text",
    [
        "",
        "127.0.0.1:9000",
        "127.0.0.1:9000:node:extra",
        ":9000:nodeABC",
        "127.0.0.1:9000:",
        "127.0.0.1::nodeABC",
        "127.0.0.1:abc:nodeABC",
        "127.0.0.1:-1:nodeABC",
        "127.0.0.1:0:nodeABC",
        "127.0.0.1:65536:nodeABC",
        "127.0.0.1:09000:nodeABC",
        "hôte:9000:nodeABC",
    ],
)
def test_malformed_strings_are_rejected(text):
    with pytest.raises(FormatError):
        parse(text)


def test_non_text_is_rejected():
    with pytest.raises(FormatError):
        parse(None)
