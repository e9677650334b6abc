"""
Tests for relationship resolution.
"""

from typing import Optional

import pytest

from entitymodel.errors import (
    AmbiguousRelationshipError,
    ModelArgumentError,
    ModelInvariantError,
    ModelShapeError,
)
from entitymodel.provenance import ConfigurationSource, Facet
from entitymodel.resolution.request import RelateRequest


class TestIdempotence:
    """Repeating a request on an unchanged model changes nothing."""

    def test_relate_twice_returns_same_foreign_key(self, burgers):
        """Test identical requests resolve to one foreign key and one pair of navigations."""
        first = burgers.relate("BigMak", "Pickle", "Pickles", "BigMak").foreign_key
        pickle = burgers.model.get_entity_type("Pickle")
        property_count = len(pickle.properties)

        second = burgers.relate("BigMak", "Pickle", "Pickles", "BigMak").foreign_key

        assert second is first
        assert len(pickle.foreign_keys) == 1
        assert len(pickle.properties) == property_count
        assert [n.name for n in first.navigations] == [n.name for n in second.navigations]
        assert len(pickle.navigations) == 1
        assert len(burgers.model.get_entity_type("BigMak").navigations) == 1

    def test_relate_without_navigations_is_idempotent(self, burgers):
        """Test a bare request reuses the foreign key it created."""
        first = burgers.relate("BigMak", "Pickle").foreign_key
        second = burgers.relate("BigMak", "Pickle").foreign_key

        assert second is first
        assert first.navigations == []

    def test_missing_navigation_name_never_removes(self, burgers):
        """Test that omitting a navigation keeps the existing one."""
        fk = burgers.relate("BigMak", "Pickle", "Pickles", "BigMak").foreign_key
        burgers.relate("BigMak", "Pickle", "Pickles").foreign_key

        assert fk.navigation_to_principal.name == "BigMak"
        assert fk.navigation_to_dependent.name == "Pickles"


class TestConventionSynthesis:
    """Shadow foreign key properties are synthesized when nothing matches."""

    def test_synthesizes_nullable_shadow_property(self, burgers):
        """Test BigMak -> Pickle yields shadow Pickle.BigMakId of Optional[int]."""
        pickle = burgers.model.get_entity_type("Pickle")
        before = {p.name for p in pickle.properties}

        fk = burgers.relate("BigMak", "Pickle", "Pickles", "BigMak").foreign_key

        added = [p for p in pickle.properties if p.name not in before]
        assert [p.name for p in added] == ["BigMakId"]
        prop = added[0]
        assert prop.is_shadow
        assert prop.is_nullable
        assert prop.clr_type == Optional[int]
        assert fk.property_names == ("BigMakId",)
        assert not fk.is_required
        assert prop.source(Facet.EXISTS) == ConfigurationSource.CONVENTION

    def test_discovers_conventionally_named_property(self, orders):
        """Test an existing CustomerId is used instead of a shadow property."""
        fk = orders.relate("Customer", "Order", "Orders", "Customer").foreign_key

        assert fk.property_names == ("CustomerId",)
        assert not fk.properties[0].is_shadow

    def test_incompatible_name_match_is_not_used(self, burgers):
        """Test a conventionally named property of the wrong type is skipped."""
        burgers.entity("Pickle").property("BigMakId", str)

        fk = burgers.relate("BigMak", "Pickle").foreign_key

        assert fk.property_names == ("BigMakId1",)
        assert fk.properties[0].clr_type == Optional[int]

    def test_relationship_source_is_explicit_but_properties_convention(self, burgers):
        """Test provenance of the pieces of an explicitly requested relationship."""
        fk = burgers.relate("BigMak", "Pickle", "Pickles", "BigMak").foreign_key

        assert fk.source(Facet.EXISTS) == ConfigurationSource.EXPLICIT
        assert fk.source(Facet.PROPERTIES) == ConfigurationSource.CONVENTION
        assert fk.navigation_to_principal.source() == ConfigurationSource.EXPLICIT

    def test_principal_without_key_fails(self, builder):
        """Test relating to a principal without a primary key is a shape error."""
        builder.entity("Bun").property("Name", str)
        builder.entity("Pickle").property("Id", int)

        with pytest.raises(ModelShapeError, match="no primary key"):
            builder.relate("Bun", "Pickle")

        assert builder.model.get_entity_type("Pickle").foreign_keys == []


class TestCompositeKeys:
    """Composite keys propagate to the dependent."""

    def test_dependent_primary_key_reused(self, burgers):
        """Test a dependent key mirroring the principal key becomes the foreign key."""
        moostard = burgers.model.get_entity_type("Moostard")
        count = len(moostard.properties)

        fk = burgers.relate("Whoopper", "Moostard", "Moostard", "Whoopper", unique=True).foreign_key

        assert fk.properties == moostard.primary_key.properties
        assert len(moostard.properties) == count
        assert fk.is_required

    def test_composite_synthesis(self, burgers):
        """Test one shadow property per key property when nothing matches."""
        fk = burgers.relate("Whoopper", "Pickle").foreign_key

        assert fk.property_names == ("WhoopperId1", "WhoopperId2")
        assert all(p.is_shadow and p.is_nullable for p in fk.properties)

    def test_explicit_composite_properties(self, hob_nob):
        """Test explicit names are used in order."""
        fk = hob_nob.relate("Nob", "Hob", foreign_key_properties=("NobId1", "NobId2")).foreign_key

        assert fk.property_names == ("NobId1", "NobId2")
        assert fk.referenced_key.property_names == ("Id1", "Id2")

    def test_count_mismatch_fails_before_mutation(self, hob_nob):
        """Test explicit names that do not match the key length are rejected."""
        hob = hob_nob.model.get_entity_type("Hob")

        with pytest.raises(ModelShapeError):
            hob_nob.relate("Nob", "Hob", foreign_key_properties=("NobId1",))

        assert hob.foreign_keys == []

    def test_count_mismatch_with_explicit_key_names(self, hob_nob):
        """Test foreign key and key name lists of different lengths are rejected."""
        with pytest.raises(ModelShapeError, match="do not match"):
            hob_nob.relate(
                "Nob",
                "Hob",
                foreign_key_properties=("NobId1",),
                referenced_key_properties=("Id1", "Id2"),
            )

        assert hob_nob.model.get_entity_type("Hob").foreign_keys == []

    def test_type_mismatch_fails(self, hob_nob):
        """Test explicit properties must line up with the key types."""
        with pytest.raises(ModelShapeError, match="not compatible"):
            hob_nob.relate("Hob", "Nob", foreign_key_properties=("Id1", "Id2"))

        assert hob_nob.model.get_entity_type("Nob").foreign_keys == []


class TestConflictSplit:
    """Requests whose uniqueness disagrees with an existing foreign key split off."""

    def test_second_foreign_key_created(self, burgers):
        """Test a one-to-many request next to a one-to-one keeps both."""
        pickle = burgers.entity("Pickle")
        pickle.property("BurgerId", Optional[int])
        one_to_one = burgers.relate(
            "BigMak", "Pickle", foreign_key_properties=("BurgerId",), unique=True
        ).foreign_key

        one_to_many = burgers.relate(
            "BigMak", "Pickle", foreign_key_properties=("BurgerId",), unique=False
        ).foreign_key

        assert one_to_many is not one_to_one
        assert one_to_one.is_unique is True
        assert one_to_many.is_unique is False
        assert one_to_one.property_names == ("BurgerId",)
        assert one_to_many.property_names == ("BigMakId",)
        assert one_to_many.properties[0].is_shadow
        assert len(pickle.metadata.foreign_keys) == 2

    def test_colliding_name_gets_ordinal(self, burgers):
        """Test a synthesized name already in use gets the first free ordinal."""
        pickle = burgers.model.get_entity_type("Pickle")
        many = burgers.relate("BigMak", "Pickle").foreign_key
        assert many.property_names == ("BigMakId",)
        count = len(pickle.properties)

        one = burgers.relate("BigMak", "Pickle", foreign_key_properties=("BigMakId",), unique=True).foreign_key

        assert one is not many
        assert one.property_names == ("BigMakId1",)
        assert many.property_names == ("BigMakId",)
        assert len(pickle.properties) == count + 1

        again = burgers.relate("BigMak", "Pickle", foreign_key_properties=("BigMakId",), unique=True).foreign_key

        assert again is one
        assert len(pickle.properties) == count + 1
        assert len(pickle.foreign_keys) == 2

    def test_ordinal_start_follows_settings(self, builder, test_settings):
        """Test the ordinal suffix starts where the settings say."""
        test_settings.shadow_name_ordinal_start = 2
        builder.entity("BigMak").property("Id", int)
        builder.entity("Pickle").property("Id", int)
        builder.relate("BigMak", "Pickle")

        one = builder.relate("BigMak", "Pickle", foreign_key_properties=("BigMakId",), unique=True).foreign_key

        assert one.property_names == ("BigMakId2",)

    def test_split_foreign_keys_never_share_properties(self, burgers):
        """Test no two foreign keys between the same types use the same properties."""
        burgers.entity("Pickle").property("BurgerId", Optional[int])
        burgers.relate("BigMak", "Pickle", foreign_key_properties="BurgerId", unique=True)
        burgers.relate("BigMak", "Pickle", foreign_key_properties="BurgerId", unique=False)
        burgers.relate("BigMak", "Pickle", unique=False)

        pickle = burgers.model.get_entity_type("Pickle")
        property_lists = [fk.property_handles for fk in pickle.foreign_keys]
        assert len(property_lists) == len(set(property_lists))

        burgers.relate("BigMak", "Pickle", foreign_key_properties="BurgerId", unique=True)
        burgers.relate("BigMak", "Pickle", foreign_key_properties="BurgerId", unique=False)
        burgers.relate("BigMak", "Pickle", unique=False)

        assert [fk.property_handles for fk in pickle.foreign_keys] == property_lists

    def test_repeated_split_returns_same_foreign_key(self, burgers):
        """Test repeating a request that split off a foreign key finds that foreign key again."""
        burgers.entity("Pickle").property("BurgerId", Optional[int])
        burgers.relate("BigMak", "Pickle", foreign_key_properties=("BurgerId",), unique=True)
        first = burgers.relate(
            "BigMak", "Pickle", foreign_key_properties=("BurgerId",), unique=False
        ).foreign_key
        pickle = burgers.model.get_entity_type("Pickle")
        count = len(pickle.foreign_keys)

        second = burgers.relate(
            "BigMak", "Pickle", foreign_key_properties=("BurgerId",), unique=False
        ).foreign_key

        assert second is first
        assert second.property_names == ("BigMakId",)
        assert second.substituted_property_names == ("BurgerId",)
        assert len(pickle.foreign_keys) == count
        assert [fk.is_unique for fk in pickle.foreign_keys] == [True, False]


class TestRequiredness:
    """Requiredness follows nullability unless configured."""

    def test_non_nullable_properties_are_required(self, hob_nob):
        """Test non-nullable foreign key properties make the relationship required."""
        handle = hob_nob.relate("Nob", "Hob", foreign_key_properties=("NobId1", "NobId2"))

        assert handle.foreign_key.is_required

    def test_optional_fails_for_non_nullable_type(self, hob_nob):
        """Test relaxing requiredness names the property, entity and type."""
        handle = hob_nob.relate("Nob", "Hob", foreign_key_properties=("NobId1", "NobId2"))

        with pytest.raises(ModelInvariantError) as exc_info:
            handle.set_required(False)

        assert str(exc_info.value) == "NobId1 on Hob of type int cannot be nullable"
        assert handle.foreign_key.is_required
        assert not hob_nob.model.get_entity_type("Hob").get_property("NobId1").is_nullable

    def test_nullable_properties_are_optional(self, hob_nob):
        """Test nullable foreign key properties default to optional."""
        handle = hob_nob.relate("Hob", "Nob", foreign_key_properties=("HobId1", "HobId2"))

        assert not handle.foreign_key.is_required

    def test_required_can_be_escalated(self, hob_nob):
        """Test making a nullable relationship required makes its properties non-nullable."""
        handle = hob_nob.relate("Hob", "Nob", foreign_key_properties=("HobId1", "HobId2"))

        handle.set_required(True)

        fk = handle.foreign_key
        assert fk.is_required
        assert all(not p.is_nullable for p in fk.properties)

    def test_shadow_properties_can_be_optional(self, burgers):
        """Test shadow properties can always become nullable again."""
        handle = burgers.relate("BigMak", "Pickle").set_required(True)
        assert not handle.foreign_key.properties[0].is_nullable

        handle.set_required(False)

        assert not handle.foreign_key.is_required
        assert handle.foreign_key.properties[0].is_nullable

    def test_key_property_cannot_be_optional(self, burgers):
        """Test a foreign key on the dependent's own key cannot become optional."""
        handle = burgers.relate("Whoopper", "Moostard", unique=True)

        with pytest.raises(ModelInvariantError, match="cannot be part of a key"):
            handle.set_required(False)


class TestOrientation:
    """Orientation converges regardless of call order."""

    def test_reversed_requests_converge(self, orders):
        """Test OrderDetails -> Order then Order -> OrderDetails resolve to one foreign key."""
        first = orders.relate("OrderDetails", "Order", "Order", "OrderDetails", unique=True).foreign_key
        second = orders.relate("Order", "OrderDetails", "OrderDetails", "Order", unique=True).foreign_key

        assert second is first
        model = orders.model
        between = model.foreign_keys_between(model.get_entity_type("Order"), model.get_entity_type("OrderDetails"))
        assert between == [first]
        assert len(first.navigations) == 2

    def test_converges_in_the_other_order(self, orders):
        """Test the opposite call order also converges."""
        first = orders.relate("Order", "OrderDetails", "OrderDetails", "Order", unique=True).foreign_key
        second = orders.relate("OrderDetails", "Order", "Order", "OrderDetails", unique=True).foreign_key

        assert second is first
        assert {n.name for n in first.navigations} == {"Order", "OrderDetails"}

    def test_fixed_orientation_flips_in_place(self, orders):
        """Test an explicit placement flips an existing foreign key without replacing it."""
        fk = orders.relate("OrderDetails", "Order", "Order", "OrderDetails", unique=True).foreign_key
        handle = fk.handle
        assert fk.entity_type.name == "Order"

        flipped = orders.relate(
            "Order", "OrderDetails", "OrderDetails", "Order", unique=True, foreign_key_on="OrderDetails"
        ).foreign_key

        assert flipped.handle == handle
        assert flipped.entity_type.name == "OrderDetails"
        assert flipped.principal_entity_type.name == "Order"
        assert flipped.property_names == ("OrderId",)
        assert flipped.navigation_to_principal.name == "Order"
        assert flipped.navigation_to_principal.entity_type.name == "OrderDetails"

    def test_one_to_many_orientation_is_fixed(self, orders):
        """Test a one-to-many request is never flipped onto the other side."""
        fk = orders.relate("Customer", "Order", "Orders", "Customer", unique=False).foreign_key

        assert fk.entity_type.name == "Order"
        assert fk.navigation_to_dependent.is_collection

    def test_prefer_principal(self, orders):
        """Test prefer_principal orients a one-to-one request."""
        fk = orders.relate(
            "CustomerDetails", "Customer", unique=True, prefer_principal="Customer"
        ).foreign_key

        assert fk.principal_entity_type.name == "Customer"
        assert fk.entity_type.name == "CustomerDetails"

    def test_self_referencing(self, builder):
        """Test a self-referencing relationship with distinct navigation names."""
        employee = builder.entity("Employee")
        employee.property("Id", int)

        fk = builder.relate("Employee", "Employee", "Reports", "Manager").foreign_key

        assert fk.is_self_referencing
        assert fk.property_names == ("EmployeeId",)
        assert {n.name for n in fk.navigations} == {"Reports", "Manager"}

    def test_self_referencing_same_names_rejected(self, builder):
        """Test both ends of a self-reference cannot share a name."""
        builder.entity("Employee").property("Id", int)

        with pytest.raises(ModelShapeError):
            builder.relate("Employee", "Employee", "Manager", "Manager")


class TestAlternateKeys:
    """Relationships can reference keys other than the primary key."""

    def test_alternate_key_created(self, orders):
        """Test referencing a non-key property adds an alternate key."""
        customer = orders.model.get_entity_type("Customer")
        order = orders.model.get_entity_type("Order")
        order_count = len(order.properties)

        fk = orders.relate(
            "Customer", "Order", "Orders", "Customer", referenced_key_properties=("AlternateId",)
        ).foreign_key

        assert len(customer.keys) == 2
        assert customer.primary_key.property_names == ("Id",)
        assert fk.referenced_key is not customer.primary_key
        assert fk.referenced_key.property_names == ("AlternateId",)
        assert fk.property_names == ("CustomerId",)
        assert len(order.properties) == order_count

    def test_two_step_configuration(self, orders):
        """Test foreign key and referenced key hints given in separate calls."""
        handle = orders.relate("Customer", "Order", "Orders", "Customer")
        original = handle.foreign_key

        handle.with_foreign_key("BuyerId")
        handle.with_referenced_key("AlternateId")

        fk = handle.foreign_key
        assert fk is original
        assert fk.property_names == ("BuyerId",)
        assert fk.referenced_key.property_names == ("AlternateId",)
        assert fk.source(Facet.PROPERTIES) == ConfigurationSource.EXPLICIT

    def test_two_step_configuration_reversed(self, orders):
        """Test the hints can be given in the opposite order."""
        handle = orders.relate("Customer", "Order", "Orders", "Customer")

        handle.with_referenced_key("AlternateId")
        assert handle.foreign_key.property_names == ("CustomerId",)
        handle.with_foreign_key("BuyerId")

        fk = handle.foreign_key
        assert fk.property_names == ("BuyerId",)
        assert fk.referenced_key.property_names == ("AlternateId",)

    def test_missing_principal_key_property_rejected(self, orders):
        """Test an unknown referenced key property without a counterpart is an argument error."""
        with pytest.raises(ModelArgumentError):
            orders.relate("Customer", "Order", referenced_key_properties=("Code",))


class TestAmbiguity:
    """Conflicting navigation names fail instead of guessing."""

    def test_navigations_on_different_foreign_keys(self, orders):
        """Test two explicit navigations bound to different foreign keys raise."""
        orders.relate("Customer", "Order", "Orders", "Customer")
        orders.relate(
            "Customer", "Order", "OtherOrders", "OtherCustomer", foreign_key_properties=("BuyerId",)
        )
        order = orders.model.get_entity_type("Order")
        before = [(fk.handle, fk.property_handles) for fk in order.foreign_keys]

        with pytest.raises(AmbiguousRelationshipError):
            orders.relate("Customer", "Order", "Orders", "OtherCustomer")

        assert [(fk.handle, fk.property_handles) for fk in order.foreign_keys] == before

    def test_explicit_navigation_outranks_convention(self, orders, resolver):
        """Test an explicit navigation wins over a convention one."""
        explicit = orders.relate("Customer", "Order", "Orders", "Customer").foreign_key
        convention = resolver.relate(
            "Customer",
            "Order",
            "OtherOrders",
            "OtherCustomer",
            foreign_key_properties=("BuyerId",),
            source=ConfigurationSource.CONVENTION,
        )
        assert convention is not None and convention is not explicit

        fk = orders.relate("Customer", "Order", "Orders", "OtherCustomer").foreign_key

        assert fk is explicit
        assert explicit.navigation_to_principal.name == "OtherCustomer"


class TestProvenanceGuards:
    """Convention requests never overwrite explicit facts."""

    def test_convention_request_blocked(self, orders, resolver):
        """Test a convention request contradicting explicit uniqueness is rolled back."""
        fk = orders.relate("Customer", "Order", "Orders", "Customer", unique=False).foreign_key

        result = resolver.relate(
            "Customer", "Order", "Orders", "Customer", unique=True, source=ConfigurationSource.CONVENTION
        )

        assert result is None
        assert fk.is_unique is False

    def test_convention_keeps_explicit_properties(self, orders, resolver):
        """Test convention requests do not rebind explicit foreign key properties."""
        fk = orders.relate(
            "Customer", "Order", "Orders", "Customer", foreign_key_properties=("BuyerId",)
        ).foreign_key

        resolver.relate("Customer", "Order", "Orders", "Customer", source=ConfigurationSource.CONVENTION)

        assert fk.property_names == ("BuyerId",)


class TestRequestValidation:
    """Malformed requests fail before touching the model."""

    def test_unknown_type(self, orders):
        """Test an unknown entity type name."""
        with pytest.raises(ModelArgumentError, match="not found"):
            orders.relate("Customer", "Invoice")

    def test_empty_property_list(self, orders):
        """Test an empty explicit property list."""
        with pytest.raises(ModelArgumentError):
            orders.relate("Customer", "Order", foreign_key_properties=())

    def test_hint_must_name_related_type(self, orders):
        """Test orientation hints outside the relationship."""
        with pytest.raises(ModelArgumentError):
            orders.relate("Customer", "Order", prefer_principal="OrderDetails")

    def test_request_orientation(self):
        """Test explicit placement hints orient the request."""
        request = RelateRequest(principal="A", dependent="B", foreign_key_on="A")

        oriented = request.oriented()

        assert oriented.principal == "B"
        assert oriented.dependent == "A"
        assert request.fixed_orientation
        assert not RelateRequest(principal="A", dependent="B", unique=True).fixed_orientation

    def test_request_accepts_single_name(self):
        """Test a single property name is accepted as a string."""
        request = RelateRequest(principal="A", dependent="B", foreign_key_properties="AId")

        assert request.foreign_key_properties == ("AId",)
