"""Short code generation and alias validation tests."""

import pytest

from shortlink.codegen import ALPHABET, generate_short_code, is_plausible_code, validate_alias
from shortlink.exceptions import ValidationError


def test_generated_code_has_requested_length_and_alphabet() -> None:
    for length in (1, 8, 12):
        code = generate_short_code(length)
        assert len(code) == length
        assert set(code) <= set(ALPHABET)


def test_default_length_is_eight() -> None:
    assert len(generate_short_code()) == 8


def test_generated_codes_do_not_repeat_in_small_sample() -> None:
    codes = {generate_short_code() for _ in range(500)}
    assert len(codes) == 500


def test_non_positive_length_rejected() -> None:
    with pytest.raises(ValueError):
        generate_short_code(0)


@pytest.mark.parametrize("alias", ["abc", "my-link", "promo_2026", "A" * 50])
def test_valid_aliases_pass(alias: str) -> None:
    assert validate_alias(alias) == alias


@pytest.mark.parametrize("alias", ["ab", "A" * 51, "has space", "emoji🙂", "slash/path", ""])
def test_invalid_aliases_rejected(alias: str) -> None:
    with pytest.raises(ValidationError):
        validate_alias(alias)


@pytest.mark.parametrize("alias", ["api", "health", "metrics", "docs", "redoc", "API"])
def test_reserved_aliases_rejected(alias: str) -> None:
    with pytest.raises(ValidationError, match="reserved"):
        validate_alias(alias)


def test_plausible_code_shape() -> None:
    assert is_plausible_code("aB3dE5fG")
    assert not is_plausible_code("")
    assert not is_plausible_code("x" * 51)
    assert not is_plausible_code("bad code")
