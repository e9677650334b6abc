"""
Unit tests for entity shapes.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

import pytest

from entitymodel.shapes import EntityShape, MemberKind, classify_member, is_scalar_type


class Status(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class Account:
    Id: int
    Opened: datetime
    Status: Status
    Owner: "Holder"
    Transfers: list["Transfer"]
    Tags: list[str]
    _cache: Optional[dict] = None
    registry: ClassVar[dict] = {}


@dataclass
class Holder:
    Id: int


@dataclass
class Transfer:
    Id: int


class TestClassifyMember:
    """Tests for member classification."""

    def test_scalars(self):
        """Test builtin and enum types are scalars."""
        assert classify_member("Id", int).kind == MemberKind.SCALAR
        assert classify_member("Name", Optional[str]).kind == MemberKind.SCALAR
        assert classify_member("Status", Status).kind == MemberKind.SCALAR
        assert is_scalar_type(datetime)

    def test_reference(self):
        """Test a class-typed member is a reference."""
        member = classify_member("Owner", Optional[Holder])

        assert member.kind == MemberKind.REFERENCE
        assert member.target == "Holder"
        assert member.is_navigation

    def test_collection(self):
        """Test a list of classes is a collection."""
        member = classify_member("Transfers", list[Transfer])

        assert member.kind == MemberKind.COLLECTION
        assert member.target == "Transfer"

    def test_list_of_scalars_is_scalar(self):
        """Test a list of strings is not a navigation."""
        assert classify_member("Tags", list[str]).kind == MemberKind.SCALAR


class TestEntityShape:
    """Tests for EntityShape."""

    def test_from_class(self):
        """Test members are read from annotations; private and ClassVar members are skipped."""
        shape = EntityShape.from_class(Account)

        assert shape.name == "Account"
        assert shape.clr_class is Account
        assert [m.name for m in shape.members] == ["Id", "Opened", "Status", "Owner", "Transfers", "Tags"]
        assert [m.name for m in shape.scalar_members] == ["Id", "Opened", "Status", "Tags"]
        assert [m.target for m in shape.navigation_members] == ["Holder", "Transfer"]

    def test_find_member(self):
        """Test member lookup by name."""
        shape = EntityShape.from_class(Account)

        assert shape.find_member("Owner").kind == MemberKind.REFERENCE
        assert shape.find_member("Missing") is None

    def test_coerce(self):
        """Test coerce accepts None, shapes and classes."""
        shape = EntityShape(name="Holder")

        assert EntityShape.coerce(None) is None
        assert EntityShape.coerce(shape) is shape
        assert EntityShape.coerce(Holder, "Owner").name == "Owner"

    def test_coerce_rejects_other_values(self):
        """Test anything else is a TypeError."""
        with pytest.raises(TypeError, match="Cannot build an entity shape"):
            EntityShape.coerce("Holder")
