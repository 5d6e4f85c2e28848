"""
Contact Variable Catalog
Known per-contact variables that prompts may reference as {{key}}
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class VariableDefinition:
    key: str
    label: str
    category: str
    required: bool = False


STANDARD_VARIABLES: List[VariableDefinition] = [
    # Contact Information
    VariableDefinition("first_name", "First Name", "Contact Information"),
    VariableDefinition("last_name", "Last Name", "Contact Information"),
    VariableDefinition("phone_number", "Phone Number", "Contact Information", required=True),
    VariableDefinition("email", "Email", "Contact Information"),
    VariableDefinition("company", "Company", "Contact Information"),

    # Property Details
    VariableDefinition("property_address", "Property Address", "Property Details"),
    VariableDefinition("city", "City", "Property Details"),
    VariableDefinition("state", "State", "Property Details"),
    VariableDefinition("zip_code", "Zip Code", "Property Details"),
    VariableDefinition("listing_price", "Listing Price", "Property Details"),
    VariableDefinition("property_type", "Property Type", "Property Details"),
    VariableDefinition("bedrooms", "Bedrooms", "Property Details"),
    VariableDefinition("bathrooms", "Bathrooms", "Property Details"),
    VariableDefinition("square_feet", "Square Feet", "Property Details"),

    # Lead Information
    VariableDefinition("lead_source", "Lead Source", "Lead Information"),
    VariableDefinition("lead_type", "Lead Type", "Lead Information"),
    VariableDefinition("interest_level", "Interest Level", "Lead Information"),
    VariableDefinition("last_contact_date", "Last Contact Date", "Lead Information"),
    VariableDefinition("previous_agent", "Previous Agent", "Lead Information"),

    # Custom Fields
    VariableDefinition("custom_1", "Custom Field 1", "Custom Fields"),
    VariableDefinition("custom_2", "Custom Field 2", "Custom Fields"),
    VariableDefinition("custom_3", "Custom Field 3", "Custom Fields"),
    VariableDefinition("custom_4", "Custom Field 4", "Custom Fields"),
    VariableDefinition("custom_5", "Custom Field 5", "Custom Fields"),
]

_BY_KEY: Dict[str, VariableDefinition] = {v.key: v for v in STANDARD_VARIABLES}

# Normalized CSV header -> variable key
HEADER_VARIATIONS: Dict[str, str] = {
    "fname": "first_name",
    "lname": "last_name",
    "firstname": "first_name",
    "lastname": "last_name",
    "phone": "phone_number",
    "mobile": "phone_number",
    "cell": "phone_number",
    "address": "property_address",
    "propertyaddr": "property_address",
    "listprice": "listing_price",
    "price": "listing_price",
}


def get_variable_by_key(key: str) -> Optional[VariableDefinition]:
    return _BY_KEY.get(key)


def get_variables_by_category() -> Dict[str, List[VariableDefinition]]:
    categories: Dict[str, List[VariableDefinition]] = {}
    for variable in STANDARD_VARIABLES:
        categories.setdefault(variable.category, []).append(variable)
    return categories


def get_required_variables() -> List[VariableDefinition]:
    return [v for v in STANDARD_VARIABLES if v.required]


def _normalize_header(header: str) -> str:
    return re.sub(r"[^a-z0-9]", "", header.lower())


def find_variable_match(csv_header: str) -> Optional[str]:
    """
    Map a CSV column header to a standard variable key.

    Tries, in order: exact match ignoring case and punctuation, known
    variations ("fname", "mobile", "price", ...), then the first variable
    whose key is contained in the header.

    Returns:
        Variable key, or None when nothing matches
    """
    normalized = _normalize_header(csv_header)
    if not normalized:
        return None

    for variable in STANDARD_VARIABLES:
        if variable.key.replace("_", "") == normalized:
            return variable.key

    if normalized in HEADER_VARIATIONS:
        return HEADER_VARIATIONS[normalized]

    for variable in STANDARD_VARIABLES:
        if variable.key.replace("_", "") in normalized:
            return variable.key

    return None
