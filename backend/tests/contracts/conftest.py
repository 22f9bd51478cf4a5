"""
Pytest fixtures for contract tests.
"""

import copy

import pytest


BASE_FRAGMENT = {
    "info": {"title": "Test API", "version": "1.0.0"},
    "security": [{"bearerAuth": []}],
    "components": {
        "schemas": {
            "Thing": {
                "type": "object",
                "required": ["id", "name"],
                "properties": {
                    "id": {"type": "string"},
                    "name": {"type": "string", "minLength": 1},
                },
            },
        },
    },
    "paths": {
        "/api/things/{thingId}": {
            "get": {
                "operationId": "getThing",
                "responses": {
                    "200": {
                        "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Thing"}}},
                    },
                    "404": {"description": "Not found"},
                },
            },
        },
    },
}


@pytest.fixture
def fragment():
    """A fresh, valid single-fragment contract document (mutable copy)."""
    return copy.deepcopy(BASE_FRAGMENT)


@pytest.fixture
def build():
    """build(*docs) parses fragment dicts into a Contract."""
    from api.contracts.loader import parse_fragments

    def _build(*docs):
        return parse_fragments([(f"fragment{i}.yaml", doc) for i, doc in enumerate(docs)])
    return _build
