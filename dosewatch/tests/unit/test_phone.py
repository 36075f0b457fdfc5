import pytest

from dosewatch.core.phone import gateway_number, normalize_phone


@pytest.mark.parametrize(
    "raw",
    ["52536742", "052536742", "21652536742", "+216 52 536 742", "+216-52-536-742", "(216) 52536742"],
)
def test_tunisian_spellings_normalize_to_e164(raw):
    res = normalize_phone(raw)
    assert res.is_valid
    assert res.normalized == "+21652536742"
    assert res.without_plus == "21652536742"
    assert res.local == "52536742"
    assert res.formats == ["+21652536742", "21652536742", "52536742", "052536742"]


def test_international_number_keeps_prefix():
    res = normalize_phone("+33 6 12 34 56 78")
    assert res.is_valid
    assert res.normalized == "+33612345678"


@pytest.mark.parametrize("raw", [None, "", "123", "0123"])
def test_invalid_numbers(raw):
    assert not normalize_phone(raw).is_valid


def test_gateway_number_ensures_country_prefix():
    assert gateway_number("52 536 742") == "21652536742"
    assert gateway_number("052536742") == "21652536742"
    assert gateway_number("+21652536742") == "21652536742"
    assert gateway_number("+33612345678") == "33612345678"
    assert gateway_number("0033612345678") == "33612345678"
