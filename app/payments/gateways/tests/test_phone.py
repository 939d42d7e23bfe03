import pytest

from payments.gateways import normalize_phone


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("0712345678", "254712345678"),
            ("+254 712 345 678", "254712345678"),
            ("254712345678", "254712345678"),
            ("712345678", "254712345678"),
            ("0110-123-456", "254110123456"),
        ],
    )
    def test_kenyan_formats(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_explicit_country_code(self):
        assert normalize_phone("0772123456", country_code="256") == "256772123456"

    @pytest.mark.parametrize("raw", ["", None, "+-- "])
    def test_no_digits(self, raw):
        with pytest.raises(ValueError):
            normalize_phone(raw)
