"""
JSON schemas of the records stored in the jsonb columns.

Only used as a lookup for query field names and their types; records are
not validated against them here.
"""

_METADATA_SCHEMA = {
    "type": "object",
    "properties": {
        "createdDate": {"type": "string", "format": "date-time"},
        "createdByUserId": {"type": "string"},
        "updatedDate": {"type": "string", "format": "date-time"},
        "updatedByUserId": {"type": "string"},
    },
}

USER_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "username": {"type": "string"},
        "externalSystemId": {"type": "string"},
        "barcode": {"type": "string"},
        "active": {"type": "boolean"},
        "type": {"type": "string"},
        "patronGroup": {"type": "string"},
        "departments": {"type": "array", "items": {"type": "string"}},
        "proxyFor": {"type": "array", "items": {"type": "string"}},
        "personal": {
            "type": "object",
            "properties": {
                "lastName": {"type": "string"},
                "firstName": {"type": "string"},
                "middleName": {"type": "string"},
                "preferredFirstName": {"type": "string"},
                "email": {"type": "string"},
                "phone": {"type": "string"},
                "mobilePhone": {"type": "string"},
                "dateOfBirth": {"type": "string", "format": "date-time"},
                "preferredContactTypeId": {"type": "string"},
            },
        },
        "enrollmentDate": {"type": "string", "format": "date-time"},
        "expirationDate": {"type": "string", "format": "date-time"},
        "createdDate": {"type": "string", "format": "date-time"},
        "updatedDate": {"type": "string", "format": "date-time"},
        "metadata": _METADATA_SCHEMA,
    },
}

GROUP_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "group": {"type": "string"},
        "desc": {"type": "string"},
        "expirationOffsetInDays": {"type": "integer"},
        "metadata": _METADATA_SCHEMA,
    },
}


def field_schema(schema: dict, path):
    """Walk `path` (list of property names) through `schema`; None if unknown."""
    node = schema
    for name in path:
        if node.get("type") == "array":
            node = node.get("items", {})
        properties = node.get("properties")
        if not properties or name not in properties:
            return None
        node = properties[name]
    return node
