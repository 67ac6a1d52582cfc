"""Service provider helpers for wiring the order services with their ports.

Views, the sweeper command and tests obtain configured services from these
factories. When ``settings.USE_HTTP_ADAPTERS`` is truthy the address
validator talks to the remote collaborator over HTTP; otherwise the
in-process ``BasicAddressValidator`` is used.
"""

from django.conf import settings

from apps.inventory.ledger import StockLedger
from apps.payments.gateway import PaymentConfirmationGateway
from .adapters import BasicAddressValidator, ZeroPricingPolicy
from .builder import OrderBuilder
from .domain import AddressValidatorPort, PricingPolicy
from .http_adapters import HttpAddressValidator
from .state_machine import OrderStateMachine
from .sweeper import ExpirySweeper


def get_address_validator() -> AddressValidatorPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        return HttpAddressValidator()
    return BasicAddressValidator()


def get_pricing_policy() -> PricingPolicy:
    return ZeroPricingPolicy()


def get_order_builder() -> OrderBuilder:
    """Return an ``OrderBuilder`` wired with the configured ports."""
    return OrderBuilder(
        ledger=StockLedger(),
        address_validator=get_address_validator(),
        pricing=get_pricing_policy(),
    )


def get_state_machine() -> OrderStateMachine:
    return OrderStateMachine(ledger=StockLedger())


def get_expiry_sweeper() -> ExpirySweeper:
    return ExpirySweeper(state_machine=get_state_machine())


def get_payment_gateway() -> PaymentConfirmationGateway:
    return PaymentConfirmationGateway(state_machine=get_state_machine())
