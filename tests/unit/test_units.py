import pytest

from c2n.UTILS.units import (
    is_valid_cpu_spec,
    is_valid_memory_spec,
    parse_bytes,
    parse_cpu,
    parse_memory,
)


@pytest.mark.parametrize('value, expected', [
    ("512M", 512),
    ("512m", 512),
    ("1G", 1024),
    ("1g", 1024),
    ("512mb", 512),
    ("1024k", 1),
    (2147483648, 2048),
    ("2147483648", 2048),
    ("1.5g", 1536),
])
def test_parse_memory(value, expected):
    assert parse_memory(value) == expected


def test_parse_memory_rejects_garbage():
    with pytest.raises(ValueError, match='Unable to parse memory value'):
        parse_memory("lots")


def test_parse_bytes():
    assert parse_bytes("64m") == 64 * 1024 * 1024
    assert parse_bytes(100) == 100


@pytest.mark.parametrize('value, expected', [
    ("0.5", 500),
    (0.5, 500),
    ("2", 2000),
    (1, 1000),
    ("0.0005", 1),
    ("0.25", 250),
])
def test_parse_cpu(value, expected):
    assert parse_cpu(value) == expected


def test_parse_cpu_rejects_non_numbers():
    with pytest.raises(ValueError):
        parse_cpu("two")
    with pytest.raises(ValueError):
        parse_cpu(True)


@pytest.mark.parametrize('value, valid', [
    ("0.5", True),
    (2, True),
    ("0", False),
    ("-1", False),
    ("abc", False),
    (None, False),
])
def test_is_valid_cpu_spec(value, valid):
    assert is_valid_cpu_spec(value) is valid


@pytest.mark.parametrize('value, valid', [
    ("512M", True),
    ("1g", True),
    ("1024", True),
    (1024, True),
    ("512MB", False),
    ("1.5g", False),
    ("lots", False),
])
def test_is_valid_memory_spec(value, valid):
    assert is_valid_memory_spec(value) is valid
