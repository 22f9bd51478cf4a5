"""
Contract loader tests - YAML fragments -> validated Contract.

Run: pytest tests/contracts/test_contract_loader.py -v
"""

import pytest
import yaml

from api.contracts import load_contract
from errors import ContractError



class TestRepoContract:
    def test_loads_every_operation(self, repo_contract):
        assert set(repo_contract.operations) == {
            "createThing", "listThings", "getThing", "updateThing", "deleteThing", "getHealth",
        }

    def test_shared_schema_defined_twice_is_deduplicated(self, repo_contract):
        # Error is declared identically in api.yaml and things.yaml
        assert list(repo_contract.schemas).count("Error") == 1

    def test_list_operation_uses_array_response(self, repo_contract):
        op = repo_contract.get_operation("listThings")
        assert op.response_is_list
        assert op.response_schema == "Thing"
        assert op.query_schema == "PageQuery"

    def test_delete_is_204_without_schema(self, repo_contract):
        op = repo_contract.get_operation("deleteThing")
        assert op.success_status == 204
        assert op.response_schema is None

    def test_health_is_public_and_things_are_secured(self, repo_contract):
        assert not repo_contract.get_operation("getHealth").requires_auth
        assert repo_contract.get_operation("createThing").requires_auth

    def test_digest_is_stable(self, repo_contract, contract_dir):
        assert load_contract(contract_dir).digest == repo_contract.digest


class TestLoaderErrors:
    def test_undefined_reference(self, build, fragment):
        fragment["components"]["schemas"]["Thing"]["properties"]["owner"] = {
            "$ref": "#/components/schemas/Owner"
        }
        with pytest.raises(ContractError) as exc:
            build(fragment)
        assert exc.value.details == {"undefined": ["Thing.owner -> Owner"]}

    def test_undefined_operation_schema(self, build, fragment):
        op = fragment["paths"]["/api/things/{thingId}"]["get"]
        op["responses"]["200"]["content"]["application/json"]["schema"]["$ref"] = "#/components/schemas/Nope"
        with pytest.raises(ContractError) as exc:
            build(fragment)
        assert "getThing -> Nope" in exc.value.details["undefined"]

    def test_name_collision_with_different_shapes(self, build, fragment):
        other = {
            "components": {"schemas": {"Thing": {
                "type": "object",
                "properties": {"id": {"type": "integer"}},
            }}},
        }
        with pytest.raises(ContractError, match="collision"):
            build(fragment, other)

    def test_same_name_same_shape_is_accepted(self, build, fragment):
        other = {"components": {"schemas": {"Thing": fragment["components"]["schemas"]["Thing"]}}}
        contract = build(fragment, other)
        assert list(contract.schemas) == ["Thing"]

    def test_required_self_reference_is_circular(self, build, fragment):
        thing = fragment["components"]["schemas"]["Thing"]
        thing["properties"]["parent"] = {"$ref": "#/components/schemas/Thing"}
        thing["required"].append("parent")
        with pytest.raises(ContractError) as exc:
            build(fragment)
        assert exc.value.details == {"cycle": ["Thing", "Thing"]}

    def test_indirect_required_cycle(self, build, fragment):
        schemas = fragment["components"]["schemas"]
        schemas["A"] = {"type": "object", "required": ["b"],
                        "properties": {"b": {"$ref": "#/components/schemas/B"}}}
        schemas["B"] = {"type": "object", "required": ["a"],
                        "properties": {"a": {"$ref": "#/components/schemas/A"}}}
        with pytest.raises(ContractError) as exc:
            build(fragment)
        assert exc.value.details["cycle"] == ["A", "B", "A"]

    @pytest.mark.parametrize("prop", [
        {"$ref": "#/components/schemas/Thing"},                       # optional
        {"$ref": "#/components/schemas/Thing", "nullable": True},     # nullable
        {"type": "array", "items": {"$ref": "#/components/schemas/Thing"}},
    ])
    def test_expressible_recursion_is_allowed(self, build, fragment, prop):
        fragment["components"]["schemas"]["Thing"]["properties"]["related"] = prop
        if "nullable" in prop or prop.get("type") == "array":
            fragment["components"]["schemas"]["Thing"]["required"].append("related")
        contract = build(fragment)
        assert contract.get_schema("Thing").get_property("related") is not None

    def test_duplicate_operation_id(self, build, fragment):
        other = {"paths": {"/api/other": {"get": {
            "operationId": "getThing",
            "responses": {"204": {"description": "x"}},
        }}}}
        with pytest.raises(ContractError, match="Duplicate operationId"):
            build(fragment, other)

    def test_duplicate_route(self, build, fragment):
        other = {"paths": {"/api/things/{thingId}": {"get": {
            "operationId": "getThingAgain",
            "responses": {"204": {"description": "x"}},
        }}}}
        with pytest.raises(ContractError, match="already defined"):
            build(fragment, other)

    def test_conflicting_info(self, build, fragment):
        with pytest.raises(ContractError, match="conflicting 'info'"):
            build(fragment, {"info": {"title": "Other", "version": "2.0.0"}})

    def test_missing_version(self, build, fragment):
        del fragment["info"]
        with pytest.raises(ContractError, match="info.version"):
            build(fragment)

    def test_two_success_responses(self, build, fragment):
        responses = fragment["paths"]["/api/things/{thingId}"]["get"]["responses"]
        responses["201"] = responses["200"]
        with pytest.raises(ContractError, match="exactly one 2xx"):
            build(fragment)

    def test_204_with_content(self, build, fragment):
        responses = fragment["paths"]["/api/things/{thingId}"]["get"]["responses"]
        responses["204"] = responses.pop("200")
        with pytest.raises(ContractError, match="204"):
            build(fragment)

    def test_inline_object_rejected(self, build, fragment):
        fragment["components"]["schemas"]["Thing"]["properties"]["meta"] = {
            "type": "object", "properties": {"a": {"type": "string"}},
        }
        with pytest.raises(ContractError, match="inline object"):
            build(fragment)

    def test_unsupported_format(self, build, fragment):
        fragment["components"]["schemas"]["Thing"]["properties"]["id"]["format"] = "ipv4"
        with pytest.raises(ContractError, match="unsupported format"):
            build(fragment)

    def test_operation_security_override(self, build, fragment):
        fragment["paths"]["/api/things/{thingId}"]["get"]["security"] = []
        assert not build(fragment).get_operation("getThing").requires_auth

    def test_load_directory_merges_sorted_fragments(self, tmp_path, fragment):
        schemas = fragment.pop("components")
        (tmp_path / "a.yaml").write_text(yaml.safe_dump(fragment))
        (tmp_path / "b.yml").write_text(yaml.safe_dump({"components": schemas}))
        (tmp_path / "notes.txt").write_text("ignored")

        contract = load_contract(tmp_path)
        assert list(contract.schemas) == ["Thing"]
        assert contract.get_schema("Thing").source == "b.yml"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("info: [unclosed")
        with pytest.raises(ContractError, match="invalid YAML"):
            load_contract(path)

    def test_schema_defined_twice_in_one_file(self, tmp_path):
        path = tmp_path / "api.yaml"
        path.write_text(
            "info: {title: Things, version: 1.0.0}\n"
            "components:\n"
            "  schemas:\n"
            "    Thing:\n"
            "      type: object\n"
            "      properties: {id: {type: string}}\n"
            "    Thing:\n"
            "      type: object\n"
            "      properties: {name: {type: integer}}\n"
        )
        with pytest.raises(ContractError, match="duplicate key 'Thing'"):
            load_contract(path)

    def test_missing_path(self, tmp_path):
        with pytest.raises(ContractError, match="not found"):
            load_contract(tmp_path / "nope.yaml")
