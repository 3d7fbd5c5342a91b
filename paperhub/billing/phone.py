"""Phone number normalisation for Cameroonian mobile-money subscribers."""

import re

from paperhub.billing.exceptions import InvalidPhoneFormat

COUNTRY_CODE = "237"

_SEPARATORS = re.compile(r"[\s\-.()]")
_LOCAL_NUMBER = re.compile(r"^6\d{8}$")
_INTERNATIONAL_NUMBER = re.compile(rf"^{COUNTRY_CODE}6\d{{8}}$")


def normalize_phone(raw: str | None) -> str:
    """Return the 12-digit ``2376XXXXXXXX`` form of a subscriber number.

    Accepts the 9-digit local form (``6XXXXXXXX``) or the same number prefixed
    with the country code, with optional ``+``/``00`` and common separators.
    Anything else raises ``InvalidPhoneFormat``.
    """
    if not raw:
        raise InvalidPhoneFormat()

    digits = _SEPARATORS.sub("", raw.strip())
    if digits.startswith("+"):
        digits = digits[1:]
    elif digits.startswith("00"):
        digits = digits[2:]

    if _LOCAL_NUMBER.match(digits):
        return COUNTRY_CODE + digits
    if _INTERNATIONAL_NUMBER.match(digits):
        return digits
    raise InvalidPhoneFormat()


def mask_phone(phone: str | None) -> str:
    """Mask all but the last three digits for log output."""
    if not phone:
        return "<none>"
    return "*" * max(len(phone) - 3, 0) + phone[-3:]
