"""
Data binder tests.

Binds already validated data onto schema instances and checks scalar
assignment, recursive construction of nested schemas, arrays of schemas,
the exported snapshot and the schema factory.
"""

from unittest.mock import Mock

import pytest
import structlog

from request_dto import SchemaFactory, bind
from tests.fixtures.schemas import (
    AddressDTO,
    BillingDTO,
    CustomerDTO,
    InternalsDTO,
    LineDTO,
    OrderDTO,
    ProfileDTO,
)

logger = structlog.get_logger("tests.unit.test_binder")


@pytest.fixture
def order_data():
    """Validated order payload with a nested address and two lines."""
    return {
        'reference': 'A-100',
        'email': 'ada@example.com',
        'shipping': {'city': 'London', 'postcode': 'N1'},
        'lines': [
            {'sku': 'PEN', 'quantity': 2},
            {'sku': 'INK', 'quantity': 1},
        ],
        'tags': ['gift'],
    }


class TestScalarBinding:
    """Fields bound without nesting."""

    def test_scalar_round_trip(self):
        profile = ProfileDTO()
        data = {'name': 'Ada', 'age': 36, 'nickname': None}

        bind(profile, data)

        assert profile.name == 'Ada'
        assert profile.age == 36
        assert profile.nickname is None
        assert profile.to_dict() == data

    def test_unknown_keys_are_ignored(self):
        profile = ProfileDTO()

        bind(profile, {'name': 'Ada', 'is_admin': True})

        assert not hasattr(profile, 'is_admin')
        assert profile.to_dict() == {'name': 'Ada'}

    def test_private_and_class_level_names_are_not_assigned(self):
        internals = InternalsDTO()

        bind(internals, {'label': 'x', '_secret': 'leak', 'limit': 99})

        assert internals.label == 'x'
        assert not hasattr(internals, '_secret')
        assert internals.limit == 10
        assert internals.to_dict() == {'label': 'x'}

    def test_sequence_without_target_is_assigned_unchanged(self, order_data):
        order = OrderDTO()

        bind(order, order_data)

        assert order.tags is order_data['tags']

    def test_snapshot_is_reset_by_each_bind(self):
        profile = ProfileDTO()

        bind(profile, {'name': 'Ada'})
        bind(profile, {'age': 36})

        assert profile.to_dict() == {'age': 36}


class TestNestedBinding:
    """Recursive construction of child schemas."""

    def test_nested_single_builds_child_instance(self, order_data):
        order = OrderDTO()

        bind(order, order_data)

        assert isinstance(order.shipping, AddressDTO)
        assert order.shipping.city == 'London'
        assert order.shipping.postcode == 'N1'
        assert order.shipping.revalidates is False

    def test_nested_array_builds_one_child_per_element(self, order_data):
        order = OrderDTO()

        bind(order, order_data)

        assert [type(line) for line in order.lines] == [LineDTO, LineDTO]
        assert [line.sku for line in order.lines] == ['PEN', 'INK']
        assert order.lines[0] is not order.lines[1]
        assert all(line.revalidates is False for line in order.lines)

    def test_nested_array_keyed_by_mapping_keeps_keys(self):
        order = OrderDTO()

        bind(order, {'lines': {'first': {'sku': 'PEN', 'quantity': 1}}})

        assert list(order.lines) == ['first']
        assert isinstance(order.lines['first'], LineDTO)

    def test_deep_nesting(self, order_data):
        customer = CustomerDTO()

        bind(customer, {
            'name': 'Ada',
            'billing': {'holder': 'Ada', 'address': {'city': 'Paris'}},
            'orders': [order_data],
        })

        assert customer.billing.address.city == 'Paris'
        assert customer.orders[0].lines[1].sku == 'INK'
        assert customer.orders[0].shipping.city == 'London'

    def test_snapshot_exports_plain_data(self, order_data):
        order = OrderDTO()

        bind(order, order_data)

        assert order.to_dict() == order_data

    def test_none_is_assigned_as_is(self):
        billing = BillingDTO()

        bind(billing, {'holder': 'Ada', 'address': None})

        assert billing.address is None
        assert billing.to_dict() == {'holder': 'Ada', 'address': None}

    def test_existing_instances_are_kept(self):
        address = AddressDTO(revalidate=False)
        line = LineDTO(revalidate=False)
        order = OrderDTO()

        bind(order, {'shipping': address, 'lines': [line]})

        assert order.shipping is address
        assert order.lines[0] is line

    def test_non_mapping_element_raises_and_leaves_instance_untouched(self):
        order = OrderDTO()

        with pytest.raises(TypeError):
            bind(order, {'reference': 'A-100', 'lines': [{'sku': 'PEN'}, 'INK']})

        assert not hasattr(order, 'reference')
        assert order.to_dict() == {}

    def test_merge_binds_through_instance_factory(self, order_data):
        factory = SchemaFactory()
        order = OrderDTO(factory=factory)

        order.merge(order_data)

        assert order.shipping.city == 'London'


class TestSchemaFactory:
    """Construction of child instances."""

    def test_default_construction_hands_factory_down(self, factory):
        address = factory(AddressDTO)

        assert isinstance(address, AddressDTO)
        assert address.revalidates is False
        assert address._factory is factory

    def test_registered_builder_is_used_for_children(self, factory, order_data):
        built = []

        def build_address(revalidate):
            address = AddressDTO(revalidate, factory=factory)
            built.append(address)
            return address

        factory.register(AddressDTO, build_address)
        order = OrderDTO(factory=factory)

        bind(order, order_data, factory)

        assert built == [order.shipping]
        assert AddressDTO in factory

    def test_builder_receives_revalidate_false(self, factory, order_data):
        builder = Mock(side_effect=lambda revalidate: LineDTO(revalidate, factory=factory))
        factory.register(LineDTO, builder)

        bind(OrderDTO(), order_data, factory)

        assert builder.call_count == 2
        builder.assert_called_with(revalidate=False)

    def test_unregister_restores_default_construction(self, factory):
        factory.register(AddressDTO, Mock())
        factory.unregister(AddressDTO)

        assert AddressDTO not in factory
        assert isinstance(factory(AddressDTO), AddressDTO)

    def test_builder_errors_propagate_before_assignment(self, factory, order_data):
        factory.register(LineDTO, Mock(side_effect=RuntimeError("no stock service")))
        order = OrderDTO()

        with pytest.raises(RuntimeError):
            bind(order, order_data, factory)

        assert not hasattr(order, 'shipping')

    def test_builders_can_be_given_up_front(self):
        builder = Mock(return_value=AddressDTO(revalidate=False))
        factory = SchemaFactory({AddressDTO: builder})

        factory(AddressDTO)

        builder.assert_called_once_with(revalidate=False)
