import secrets
import string

ID_LENGTH = 6
ID_CHARS = string.ascii_letters + string.digits


def generate_id(length: int = ID_LENGTH) -> str:
    return ''.join(secrets.choice(ID_CHARS) for _ in range(length))


def is_valid_id(value, length: int = ID_LENGTH) -> bool:
    """True if value could have come from generate_id.

    Anything that passes is safe to use as a bare file name: no separators,
    no dots, nothing outside ASCII letters and digits.
    """
    if not isinstance(value, str) or len(value) != length:
        return False
    return all(c in ID_CHARS for c in value)
