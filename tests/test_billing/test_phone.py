"""Tests for phone number normalisation."""

import pytest

from paperhub.billing.exceptions import InvalidPhoneFormat
from paperhub.billing.phone import mask_phone, normalize_phone


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw",
        [
            "677123456",
            "237677123456",
            "+237677123456",
            "00237677123456",
            "+237 677 12 34 56",
            "677-123-456",
            " 677.123.456 ",
        ],
    )
    def test_accepted_forms(self, raw):
        assert normalize_phone(raw) == "237677123456"

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            None,
            "77123456",  # 8 digits
            "577123456",  # must start with 6
            "6771234567",  # 10 digits
            "238677123456",  # wrong country code
            "23767712345a",
            "phone",
        ],
    )
    def test_rejected_forms(self, raw):
        with pytest.raises(InvalidPhoneFormat):
            normalize_phone(raw)

    def test_error_message_explains_format(self):
        with pytest.raises(InvalidPhoneFormat) as exc_info:
            normalize_phone("123")
        assert "9-digit" in exc_info.value.message


class TestMaskPhone:
    def test_keeps_last_three_digits(self):
        assert mask_phone("237677123456") == "*********456"

    def test_empty(self):
        assert mask_phone(None) == "<none>"
