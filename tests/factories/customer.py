"""
Customer test factories.

CustomerFactory builds plain attribute objects shaped like Customer rows, for
evaluating rules without a database. CustomerPayloadFactory builds request
bodies for the customers API.
"""

from datetime import timezone
from decimal import Decimal
from types import SimpleNamespace

import factory
from faker import Faker

fake = Faker()


class CustomerFactory(factory.Factory):
    """
    Factory for in-memory customer records.

    Usage:
        customer = CustomerFactory(total_spend=1200, visit_count=3)
        customers = CustomerFactory.create_batch(20)
    """

    class Meta:
        model = SimpleNamespace

    id = factory.Sequence(lambda n: n + 1)
    name = factory.LazyFunction(fake.name)
    email = factory.Sequence(lambda n: f"customer{n}@example.com")
    phone = factory.LazyFunction(lambda: fake.phone_number()[:20])
    total_spend = factory.LazyFunction(
        lambda: Decimal(str(fake.pyfloat(min_value=0, max_value=5000, right_digits=2)))
    )
    visit_count = factory.LazyFunction(lambda: fake.random_int(min=0, max=40))
    last_visit = factory.LazyFunction(
        lambda: fake.date_time_this_year(tzinfo=timezone.utc)
    )
    created_at = factory.LazyFunction(
        lambda: fake.date_time_between(start_date="-3y", end_date="-1y", tzinfo=timezone.utc)
    )


class NewCustomerFactory(CustomerFactory):
    """Customer that has never placed an order."""

    total_spend = Decimal("0")
    visit_count = 0
    last_visit = None


class CustomerPayloadFactory(factory.Factory):
    """Factory for customer create request bodies."""

    class Meta:
        model = dict

    name = factory.LazyFunction(fake.name)
    email = factory.Sequence(lambda n: f"api-customer{n}@example.com")
    phone = factory.LazyFunction(lambda: fake.numerify("555-###-####"))
