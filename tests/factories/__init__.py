"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .customer import CustomerFactory, NewCustomerFactory, CustomerPayloadFactory

__all__ = [
    "CustomerFactory",
    "NewCustomerFactory",
    "CustomerPayloadFactory",
]
