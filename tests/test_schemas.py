from __future__ import annotations

import pytest
from pydantic import ValidationError

from shirtforge.schemas import AdminConfig, GenerateDesignsRequest, ShippingAddress

VALID_ADDRESS = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "email": "ada@example.com",
    "phone": "(555) 123-4567",
    "country": "US",
    "state": "NY",
    "address1": "1 Main St",
    "city": "New York",
    "zipCode": "10001-1234",
}


def test_checkout_form_names_map_to_printify_address():
    address = ShippingAddress.model_validate(VALID_ADDRESS)

    assert address.to_printify() == {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "phone": "(555) 123-4567",
        "country": "US",
        "region": "NY",
        "address1": "1 Main St",
        "address2": "",
        "city": "New York",
        "zip": "10001-1234",
    }


def test_order_email_overrides_address_email():
    address = ShippingAddress.model_validate(VALID_ADDRESS)

    assert address.to_printify(email="buyer@example.com")["email"] == "buyer@example.com"


def test_missing_required_fields_are_listed():
    with pytest.raises(ValidationError, match="Missing required fields: address1, city"):
        ShippingAddress.model_validate({**VALID_ADDRESS, "address1": " ", "city": ""})


@pytest.mark.parametrize(
    ("country", "zip_code", "valid"),
    [
        ("US", "10001", True),
        ("US", "1000", False),
        ("US", "ABCDE", False),
        ("GB", "SW1A 1AA", True),
        ("GB", "12", False),
    ],
)
def test_postal_code_rules_depend_on_country(country, zip_code, valid):
    payload = {**VALID_ADDRESS, "country": country, "zipCode": zip_code}
    if valid:
        assert ShippingAddress.model_validate(payload).zip == zip_code
    else:
        with pytest.raises(ValidationError, match="Invalid postal code"):
            ShippingAddress.model_validate(payload)


def test_bad_email_and_phone_are_rejected():
    with pytest.raises(ValidationError, match="valid email"):
        ShippingAddress.model_validate({**VALID_ADDRESS, "email": "not-an-email"})
    with pytest.raises(ValidationError, match="valid phone"):
        ShippingAddress.model_validate({**VALID_ADDRESS, "phone": "call me"})


def test_prompt_is_trimmed_and_capped():
    request = GenerateDesignsRequest(prompt="  " + "x" * 600 + "  ")

    assert len(request.prompt) == 500
    assert request.prompt == "x" * 500


def test_admin_config_defaults_and_extra_keys():
    config = AdminConfig.model_validate({"experimentalBanner": "hello"})

    dumped = config.model_dump()
    assert dumped["imageSource"] == "pollinations"
    assert dumped["shirtPrice"] == 2499
    assert dumped["blueprintId"] == 6
    assert dumped["printProviderId"] == 103
    assert dumped["experimentalBanner"] == "hello"
