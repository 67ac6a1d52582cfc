"""In-process adapters for the orders domain ports.

``BasicAddressValidator`` implements ``AddressValidatorPort`` with local
format checks only (no network calls) and ``ZeroPricingPolicy`` implements
``PricingPolicy`` by charging no shipping, tax or discount. Both are the
defaults used when HTTP adapters are disabled.
"""

import re
from decimal import Decimal
from typing import List

from .domain import (
    AddressValidation,
    AddressValidatorPort,
    Charges,
    LineRequest,
    PricingPolicy,
    ShippingAddress,
)

PHONE_RE = re.compile(r"^\+[1-9]\d{1,14}$")
COUNTRY_RE = re.compile(r"^[A-Z]{2}$")


class BasicAddressValidator(AddressValidatorPort):
    """Validate required fields and formats, then build a standardized text.

    Phone numbers must be in international format (``+<country><number>``,
    spaces ignored) and the country must be an ISO 3166-1 alpha-2 code.
    """

    def validate(self, address: ShippingAddress) -> AddressValidation:
        suggestions: List[str] = []

        if not (address.name or "").strip():
            suggestions.append("Recipient name is required")

        phone = (address.phone or "").strip()
        if not phone:
            suggestions.append("Recipient phone is required")
        elif not PHONE_RE.match(re.sub(r"\s", "", phone)):
            suggestions.append("Phone must use international format, e.g. +86 138 0013 8000")

        country = (address.country or "").strip()
        if not country:
            suggestions.append("Country is required")
        elif not COUNTRY_RE.match(country):
            suggestions.append("Country must be an ISO 3166-1 alpha-2 code, e.g. CN or US")

        if not (address.province or "").strip():
            suggestions.append("Province/state is required")
        if not (address.city or "").strip():
            suggestions.append("City is required")
        if not (address.address_line_1 or "").strip():
            suggestions.append("Address line 1 is required")

        if suggestions:
            return AddressValidation(is_valid=False, verification_level="none", suggestions=suggestions)

        return AddressValidation(
            is_valid=True,
            standardized_address=self.standardize(address),
            verification_level="partial",
        )

    @staticmethod
    def standardize(address: ShippingAddress) -> str:
        lines = [
            part.strip()
            for part in (address.address_line_1, address.address_line_2, address.address_line_3)
            if part and part.strip()
        ]
        location = [
            part.strip()
            for part in (address.city, address.district, address.province, address.postal_code, address.country)
            if part and part.strip()
        ]
        if location:
            lines.append(", ".join(location))
        return "\n".join(lines)


class ZeroPricingPolicy(PricingPolicy):
    """No shipping, tax or discount."""

    def charges(self, subtotal: Decimal, lines: List[LineRequest], address: ShippingAddress) -> Charges:
        return Charges()
