"""Tests for structured-output and tool-argument validation.

These tests verify that model replies are strictly validated against
output annotations and that invalid replies raise SchemaMismatch.
"""

import pytest

from gentlang import ast
from gentlang.errors import GentTypeError
from gentlang.parser import parse
from gentlang.schemas import SchemaCompiler, SchemaMismatch, sample_value, strip_code_fences
from gentlang.semantic import SemanticAnalyzer
from gentlang.types import EnumValue, StructValue, TypeRegistry


def compiler_for(src: str) -> SchemaCompiler:
    analysis = SemanticAnalyzer(parse(src)).analyze()
    return SchemaCompiler(TypeRegistry(analysis.structs, analysis.enums))


def named(name: str) -> ast.NamedType:
    return ast.NamedType(name)


TYPES = """
struct Address { city: string, zip: number }
struct Person { name: string, age: number, tags: string[], address: Address }
enum Mood { Happy, Sad }
struct Entry { mood: Mood, json: boolean }
"""


class TestStructOutput:
    """Struct-typed output is validated and coerced to a struct value."""

    def test_valid_reply(self):
        compiler = compiler_for(TYPES)
        text = '{"name": "Ada", "age": 36, "tags": ["math"], "address": {"city": "London", "zip": 1}}'
        value = compiler.validate_output(text, named("Person"))
        assert isinstance(value, StructValue)
        assert value.type_name == "Person"
        assert value.fields["age"] == 36
        assert isinstance(value.fields["address"], StructValue)
        assert value.fields["address"].fields["city"] == "London"

    def test_code_fences_are_stripped(self):
        compiler = compiler_for(TYPES)
        text = '```json\n{"city": "Paris", "zip": 75}\n```'
        value = compiler.validate_output(text, named("Address"))
        assert value.fields == {"city": "Paris", "zip": 75}

    def test_missing_field(self):
        compiler = compiler_for(TYPES)
        with pytest.raises(SchemaMismatch, match="zip"):
            compiler.validate_output('{"city": "Paris"}', named("Address"))

    def test_string_number_is_not_coerced(self):
        compiler = compiler_for(TYPES)
        with pytest.raises(SchemaMismatch, match="zip"):
            compiler.validate_output('{"city": "Paris", "zip": "75"}', named("Address"))

    def test_boolean_is_not_a_number(self):
        compiler = compiler_for(TYPES)
        with pytest.raises(SchemaMismatch):
            compiler.validate_output('{"city": "Paris", "zip": true}', named("Address"))

    def test_array_element_type(self):
        compiler = compiler_for(TYPES)
        text = '{"name": "A", "age": 1, "tags": ["x", 2], "address": {"city": "c", "zip": 1}}'
        with pytest.raises(SchemaMismatch, match="tags.1"):
            compiler.validate_output(text, named("Person"))

    def test_invalid_json(self):
        compiler = compiler_for(TYPES)
        with pytest.raises(SchemaMismatch, match="not valid JSON"):
            compiler.validate_output("Sure! Here you go.", named("Address"))

    def test_extra_keys_are_dropped(self):
        compiler = compiler_for(TYPES)
        value = compiler.validate_output('{"city": "c", "zip": 1, "country": "x"}', named("Address"))
        assert value.fields == {"city": "c", "zip": 1}

    def test_field_names_shadowing_model_attributes(self):
        compiler = compiler_for(TYPES)
        value = compiler.validate_output('{"mood": "Happy", "json": false}', named("Entry"))
        assert value.fields["mood"] == EnumValue("Mood", "Happy")
        assert value.fields["json"] is False


class TestOtherShapes:

    def test_inline_object_stays_plain(self):
        compiler = compiler_for(TYPES)
        program = parse('agent A { systemPrompt: "x" output: { score: number, ok: boolean } }')
        shape = program.of_kind(ast.AgentDecl)[0].output
        assert compiler.validate_output('{"score": 0.5, "ok": true}', shape) == {"score": 0.5, "ok": True}

    def test_array_of_structs(self):
        compiler = compiler_for(TYPES)
        value = compiler.validate_output('[{"city": "a", "zip": 1}]', ast.ArrayType(named("Address")))
        assert [v.fields["city"] for v in value] == ["a"]

    def test_unknown_enum_variant(self):
        compiler = compiler_for(TYPES)
        with pytest.raises(SchemaMismatch, match="mood"):
            compiler.validate_output('{"mood": "Angry", "json": true}', named("Entry"))

    def test_enum_with_data_is_rejected_as_schema(self):
        compiler = compiler_for("enum Result { Ok(string), Err }")
        with pytest.raises(GentTypeError, match="cannot be used as a schema type"):
            compiler.validate_output('"Err"', named("Result"))

    def test_plain_string_output_accepts_text(self):
        compiler = compiler_for(TYPES)
        assert compiler.validate_output("just text", named("string")) == "just text"


class TestToolArguments:
    """Tool-call arguments bind to parameters in declaration order."""

    PARAMS = (ast.Param("path", named("string")), ast.Param("limit", named("number")))

    def test_binds_in_order(self):
        compiler = compiler_for(TYPES)
        assert compiler.validate_arguments(self.PARAMS, {"limit": 3, "path": "a.txt"}) == ["a.txt", 3]

    def test_missing_argument(self):
        compiler = compiler_for(TYPES)
        with pytest.raises(SchemaMismatch, match="missing required argument\\(s\\): limit"):
            compiler.validate_arguments(self.PARAMS, {"path": "a.txt"})

    def test_wrong_type(self):
        compiler = compiler_for(TYPES)
        with pytest.raises(SchemaMismatch, match="argument 'limit'"):
            compiler.validate_arguments(self.PARAMS, {"path": "a.txt", "limit": "3"})

    def test_untyped_parameter_accepts_anything(self):
        compiler = compiler_for(TYPES)
        assert compiler.validate_arguments((ast.Param("x"),), {"x": [1, {"a": None}]}) == [[1, {"a": None}]]

    def test_parameters_schema(self):
        compiler = compiler_for(TYPES)
        schema = compiler.parameters_schema(self.PARAMS)
        assert schema == {
            "type": "object",
            "properties": {"path": {"type": "string"}, "limit": {"type": "number"}},
            "required": ["path", "limit"],
        }


def test_json_schema_and_sample():
    compiler = compiler_for(TYPES)
    schema = compiler.json_schema(named("Entry"))
    assert schema["properties"]["mood"] == {"type": "string", "enum": ["Happy", "Sad"]}
    sample = sample_value(compiler.json_schema(named("Person")))
    # a synthesised sample always satisfies its own schema
    value = compiler.validate(sample, named("Person"))
    assert value.type_name == "Person"


def test_strip_code_fences_leaves_plain_text():
    assert strip_code_fences("  {\"a\": 1}  ") == '{"a": 1}'
    assert strip_code_fences("```\n[1]\n```") == "[1]"
