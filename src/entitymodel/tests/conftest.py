"""
Pytest configuration and shared fixtures for entitymodel tests.
"""

from typing import Optional

import pytest

from entitymodel.builder import ModelBuilder
from entitymodel.config import Settings
from entitymodel.metadata.model import Model
from entitymodel.resolution.resolver import RelationshipResolver


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def builder(test_settings) -> ModelBuilder:
    """A builder with conventions enabled."""
    return ModelBuilder(settings=test_settings)


@pytest.fixture
def model(builder) -> Model:
    return builder.model


@pytest.fixture
def resolver(builder) -> RelationshipResolver:
    return builder.resolver


@pytest.fixture
def burgers(builder) -> ModelBuilder:
    """BigMak and Pickle with single int keys; Whoopper and Moostard with composite keys."""
    builder.entity("BigMak").property("Id", int)
    builder.entity("Pickle").property("Id", int)

    whoopper = builder.entity("Whoopper")
    whoopper.property("Id1", int)
    whoopper.property("Id2", int)
    whoopper.key("Id1", "Id2")

    moostard = builder.entity("Moostard")
    moostard.property("Id1", int)
    moostard.property("Id2", int)
    moostard.key("Id1", "Id2")
    return builder


@pytest.fixture
def hob_nob(builder) -> ModelBuilder:
    """
    Two types with composite keys pointing at each other.

    Hob holds non-nullable int properties for Nob's key, Nob holds
    nullable str properties for Hob's key.
    """
    hob = builder.entity("Hob")
    hob.property("Id1", str)
    hob.property("Id2", str)
    hob.key("Id1", "Id2")
    hob.property("NobId1", int)
    hob.property("NobId2", int)

    nob = builder.entity("Nob")
    nob.property("Id1", int)
    nob.property("Id2", int)
    nob.key("Id1", "Id2")
    nob.property("HobId1", Optional[str])
    nob.property("HobId2", Optional[str])
    return builder


@pytest.fixture
def orders(builder) -> ModelBuilder:
    """Customer, Order, OrderDetails and an empty CustomerDetails."""
    customer = builder.entity("Customer")
    customer.property("Id", int)
    customer.property("AlternateId", int)
    customer.property("Name", str)

    order = builder.entity("Order")
    order.property("Id", int)
    order.property("CustomerId", Optional[int])
    order.property("BuyerId", Optional[int])

    details = builder.entity("OrderDetails")
    details.property("Id", int)
    details.property("OrderId", int)

    builder.entity("CustomerDetails")
    return builder
