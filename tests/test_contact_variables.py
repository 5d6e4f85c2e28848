"""
Tests for the contact variable catalog and CSV header matching
"""

import pytest

from app.services.contact_variables import (
    STANDARD_VARIABLES,
    find_variable_match,
    get_required_variables,
    get_variable_by_key,
    get_variables_by_category,
)


class TestCatalog:
    """Tests for catalog lookups."""

    def test_keys_are_unique(self):
        keys = [v.key for v in STANDARD_VARIABLES]
        assert len(keys) == len(set(keys))

    def test_phone_number_is_the_only_required_variable(self):
        assert [v.key for v in get_required_variables()] == ["phone_number"]

    def test_lookup_by_key(self):
        assert get_variable_by_key("listing_price").label == "Listing Price"
        assert get_variable_by_key("nope") is None

    def test_categories(self):
        categories = get_variables_by_category()

        assert set(categories) == {
            "Contact Information",
            "Property Details",
            "Lead Information",
            "Custom Fields",
        }
        assert len(categories["Custom Fields"]) == 5


class TestFindVariableMatch:
    """Tests for find_variable_match()."""

    @pytest.mark.parametrize("header,expected", [
        ("First Name", "first_name"),
        ("first_name", "first_name"),
        ("ZIP-Code", "zip_code"),
        ("fname", "first_name"),
        ("Mobile", "phone_number"),
        ("Price", "listing_price"),
        ("Primary Email Address", "email"),
    ])
    def test_matches(self, header, expected):
        assert find_variable_match(header) == expected

    @pytest.mark.parametrize("header", ["", "---", "Favorite Color"])
    def test_no_match(self, header):
        assert find_variable_match(header) is None
