import pytest

from ..core.errors import ValidationError
from ..core.security import (
    CODE_ALPHABET,
    burn_verification,
    generate_link_code,
    hash_secret,
    normalize_link_code,
    validate_secret,
    verify_secret,
)


def test_generated_codes_use_the_code_alphabet() -> None:
    for _ in range(50):
        code = generate_link_code()
        assert len(code) == 8
        assert set(code) <= set(CODE_ALPHABET)


def test_normalize_link_code_is_case_insensitive() -> None:
    assert normalize_link_code(" abcd2345 ") == "ABCD2345"
    with pytest.raises(ValidationError):
        normalize_link_code("SHORT")
    with pytest.raises(ValidationError):
        normalize_link_code("ABCD0123")  # 0 and 1 are not in the alphabet


def test_hash_is_salted_and_verifies() -> None:
    first = hash_secret("1234", 4)
    second = hash_secret("1234", 4)
    assert first != second
    assert "1234" not in first
    assert verify_secret("1234", first)
    assert not verify_secret("0000", first)
    assert not verify_secret("1234", None)
    assert not verify_secret("1234", "garbage")


@pytest.mark.parametrize("secret", ["123", "12345", "abcd", "", None, 1234, "1234\n", " 1234"])
def test_validate_secret_requires_four_digits(secret) -> None:
    with pytest.raises(ValidationError):
        validate_secret(secret)


def test_hashes_are_bcrypt() -> None:
    encoded = hash_secret("4321", 4)
    assert encoded.startswith("$2b$04$")
    assert verify_secret("4321", encoded)


def test_code_with_trailing_garbage_is_rejected() -> None:
    with pytest.raises(ValidationError):
        normalize_link_code("ABCD2345\nX")


def test_burn_verification_does_not_raise() -> None:
    burn_verification(4)
