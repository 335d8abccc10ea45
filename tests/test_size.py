import pytest

from trafficreplay.size import parse_size


@pytest.mark.parametrize(
    "text, expected",
    [
        ("42mb", 42 << 20),
        ("4_2", 42),
        ("00", 0),
        ("0", 0),
        ("0_600tb", 384 << 40),
        ("0600Tb", 384 << 40),
        ("0o12Mb", 10 << 20),
        ("0b_10010001111_1kb", 2335 << 10),
        ("1024", 1 << 10),
        ("0b111", 7),
        ("0x12gB", 18 << 30),
        ("0x_67_7a_2f_cc_40_c6", 113774485586118),
        ("121562380192901", 121562380192901),
    ],
)
def test_parse_data_unit(text, expected):
    assert parse_size(text) == expected


def test_empty_text_sets_nothing():
    assert parse_size("") is None


@pytest.mark.parametrize("text", ["abc", "12zb", "1__2", "_12", "0b12", "12 kb", "kb"])
def test_invalid_sizes_raise(text):
    with pytest.raises(ValueError):
        parse_size(text)


def test_units_scale_by_powers_of_1024():
    base = parse_size("3")
    assert parse_size("3kb") == base * 1024
    assert parse_size("3mb") == parse_size("3kb") * 1024
    assert parse_size("3gb") == parse_size("3mb") * 1024
    assert parse_size("3tb") == parse_size("3gb") * 1024