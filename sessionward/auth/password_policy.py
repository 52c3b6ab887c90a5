"""Password strength rules applied at registration.

The rule set is fixed: length 8-128, one each of uppercase, lowercase, digit
and special character, no whitespace, and no run of five or more consecutive
characters from the alphabet, the digits, or a US QWERTY keyboard row (either
direction, no wrap-around). Every rule is evaluated, so callers get the full
list of violations in one pass.
"""

import string
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

logger = structlog.get_logger(__name__)

MIN_LENGTH = 8
MAX_LENGTH = 128
SEQUENCE_LENGTH = 5

TOO_SHORT = "TOO_SHORT"
TOO_LONG = "TOO_LONG"
INSUFFICIENT_UPPERCASE = "INSUFFICIENT_UPPERCASE"
INSUFFICIENT_LOWERCASE = "INSUFFICIENT_LOWERCASE"
INSUFFICIENT_DIGIT = "INSUFFICIENT_DIGIT"
INSUFFICIENT_SPECIAL = "INSUFFICIENT_SPECIAL"
ILLEGAL_WHITESPACE = "ILLEGAL_WHITESPACE"
ILLEGAL_ALPHABETICAL_SEQUENCE = "ILLEGAL_ALPHABETICAL_SEQUENCE"
ILLEGAL_NUMERICAL_SEQUENCE = "ILLEGAL_NUMERICAL_SEQUENCE"
ILLEGAL_QWERTY_SEQUENCE = "ILLEGAL_QWERTY_SEQUENCE"

_MESSAGES: Dict[str, str] = {
    TOO_SHORT: f"Password must be at least {MIN_LENGTH} characters long",
    TOO_LONG: f"Password must be at most {MAX_LENGTH} characters long",
    INSUFFICIENT_UPPERCASE: "Password must contain at least one uppercase letter",
    INSUFFICIENT_LOWERCASE: "Password must contain at least one lowercase letter",
    INSUFFICIENT_DIGIT: "Password must contain at least one digit",
    INSUFFICIENT_SPECIAL: "Password must contain at least one special character",
    ILLEGAL_WHITESPACE: "Password must not contain whitespace",
    ILLEGAL_ALPHABETICAL_SEQUENCE: (
        f"Password must not contain {SEQUENCE_LENGTH} or more consecutive letters"
    ),
    ILLEGAL_NUMERICAL_SEQUENCE: (
        f"Password must not contain {SEQUENCE_LENGTH} or more consecutive digits"
    ),
    ILLEGAL_QWERTY_SEQUENCE: (
        f"Password must not contain {SEQUENCE_LENGTH} or more adjacent keyboard keys"
    ),
}

UPPERCASE = frozenset(string.ascii_uppercase)
LOWERCASE = frozenset(string.ascii_lowercase)
DIGITS = frozenset(string.digits)
# ASCII punctuation plus the Latin-1 symbol block and the multiplication/division signs
SPECIAL_CHARACTERS = frozenset(
    string.punctuation + "".join(chr(c) for c in range(0xA1, 0xC0)) + "×÷"
)

# Each position lists every character that counts as that position.
_Alphabet = Tuple[frozenset, ...]


def _alphabet(*variants: str) -> _Alphabet:
    return tuple(frozenset(chars) for chars in zip(*variants))


ALPHABETICAL: _Alphabet = _alphabet(string.ascii_lowercase, string.ascii_uppercase)
NUMERICAL: _Alphabet = _alphabet(string.digits)
QWERTY_ROWS: Tuple[_Alphabet, ...] = (
    _alphabet("`1234567890-=", "~!@#$%^&*()_+"),
    _alphabet("qwertyuiop[]\\", "QWERTYUIOP{}|"),
    _alphabet("asdfghjkl;'", 'ASDFGHJKL:"'),
    _alphabet("zxcvbnm,./", "ZXCVBNM<>?"),
)


@dataclass(frozen=True)
class PasswordValidationResult:
    """Validation outcome; ``violations`` keeps rule order."""

    valid: bool
    violations: List[str] = field(default_factory=list)

    @property
    def messages(self) -> List[str]:
        return [describe_violation(code) for code in self.violations]


def describe_violation(code: str) -> str:
    """Human-readable message for a violation code."""
    return _MESSAGES.get(code, code)


def _positions(ch: str, alphabet: _Alphabet) -> List[int]:
    return [i for i, variants in enumerate(alphabet) if ch in variants]


def _has_sequence(password: str, alphabet: _Alphabet, length: int = SEQUENCE_LENGTH) -> bool:
    """True if ``password`` holds ``length`` characters that step through ``alphabet``.

    Steps of +1 and -1 are checked separately; the alphabet does not wrap.
    """
    for direction in (1, -1):
        # run length ending at the previous character, keyed by alphabet position
        runs: Dict[int, int] = {}
        for ch in password:
            current: Dict[int, int] = {}
            for pos in _positions(ch, alphabet):
                current[pos] = runs.get(pos - direction, 0) + 1
                if current[pos] >= length:
                    return True
            runs = current
    return False


def _has_any_sequence(password: str, alphabets: Sequence[_Alphabet]) -> bool:
    return any(_has_sequence(password, alphabet) for alphabet in alphabets)


class PasswordPolicy:
    """Pure password rule checker.

    Example:
        >>> PasswordPolicy().validate("Secure123!").valid
        True
        >>> PasswordPolicy().validate("abcdefG1!").violations
        ['ILLEGAL_ALPHABETICAL_SEQUENCE']
    """

    def validate(self, password: Optional[str]) -> PasswordValidationResult:
        password = password or ""
        violations: List[str] = []

        if len(password) < MIN_LENGTH:
            violations.append(TOO_SHORT)
        elif len(password) > MAX_LENGTH:
            violations.append(TOO_LONG)

        chars = set(password)
        if not chars & UPPERCASE:
            violations.append(INSUFFICIENT_UPPERCASE)
        if not chars & LOWERCASE:
            violations.append(INSUFFICIENT_LOWERCASE)
        if not chars & DIGITS:
            violations.append(INSUFFICIENT_DIGIT)
        if not chars & SPECIAL_CHARACTERS:
            violations.append(INSUFFICIENT_SPECIAL)
        if any(ch.isspace() for ch in password):
            violations.append(ILLEGAL_WHITESPACE)

        if _has_sequence(password, ALPHABETICAL):
            violations.append(ILLEGAL_ALPHABETICAL_SEQUENCE)
        if _has_sequence(password, NUMERICAL):
            violations.append(ILLEGAL_NUMERICAL_SEQUENCE)
        if _has_any_sequence(password, QWERTY_ROWS):
            violations.append(ILLEGAL_QWERTY_SEQUENCE)

        if violations:
            logger.warning(
                "password_validation_failed",
                violation_count=len(violations),
                violations=violations,
            )
        else:
            logger.debug("password_validation_passed")

        return PasswordValidationResult(valid=not violations, violations=violations)
