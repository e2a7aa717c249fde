"""
Helpers for the OpenAPI-style record schemas that describe resources.

A resource schema is a plain dict in OpenAPI 3 "schema object" form:
``{"type": "object", "properties": {...}, "required": [...], "description": ...}``.
"""

from typing import Any, Dict, List, Optional
import copy

from core.exceptions import NoPrimaryKeyError, SchemaSyncError

ID_SUFFIX = "_id"


def resolve_ref(ref: str, spec: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve a local ``#/...`` reference against the owning document."""
    if not ref.startswith("#/"):
        raise SchemaSyncError(f"Only local references are supported: {ref}", context={"ref": ref})

    node: Any = spec
    for part in ref[2:].split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        if not isinstance(node, dict) or part not in node:
            raise SchemaSyncError(f"Unresolvable reference: {ref}", context={"ref": ref})
        node = node[part]
    return node


def merge_all_of(schema: Dict[str, Any], spec: Optional[Dict[str, Any]] = None, _seen: Optional[set] = None) -> Dict[str, Any]:
    """
    Flatten ``$ref`` and ``allOf`` into a single object schema.

    Properties and required lists of every ``allOf`` member are merged;
    the outer schema's own keys win. Cyclic references stop at the first
    repetition.
    """
    seen = set(_seen or ())

    if "$ref" in schema and spec is not None:
        ref = schema["$ref"]
        if ref in seen:
            return {"type": "object"}
        seen.add(ref)
        return merge_all_of(resolve_ref(ref, spec), spec, seen)

    if "allOf" not in schema:
        return copy.deepcopy(schema)

    merged: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}
    for part in schema["allOf"]:
        flat = merge_all_of(part, spec, seen)
        merged["properties"].update(flat.get("properties", {}))
        for name in flat.get("required", []):
            if name not in merged["required"]:
                merged["required"].append(name)
        if flat.get("description") and "description" not in merged:
            merged["description"] = flat["description"]

    for key, value in schema.items():
        if key == "allOf":
            continue
        if key == "properties":
            merged["properties"].update(copy.deepcopy(value))
        elif key == "required":
            merged["required"].extend(n for n in value if n not in merged["required"])
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def get_component_schema(spec: Optional[Dict[str, Any]], name: str) -> Optional[Dict[str, Any]]:
    """Return the flattened ``components.schemas[name]`` or None."""
    if not spec:
        return None
    schema = spec.get("components", {}).get("schemas", {}).get(name)
    if schema is None:
        return None
    return merge_all_of(schema, spec)


def property_type(prop: Dict[str, Any]) -> Optional[str]:
    """Base JSON type of a property; nullable type lists collapse to the non-null member."""
    prop_type = prop.get("type")
    if isinstance(prop_type, list):
        non_null = [t for t in prop_type if t != "null"]
        return non_null[0] if non_null else None
    if prop_type is None and ("properties" in prop or "additionalProperties" in prop):
        return "object"
    return prop_type


def primary_key_candidates(schema: Dict[str, Any]) -> List[str]:
    """Required properties named with the id suffix, in declaration order."""
    properties = schema.get("properties") or {}
    return [
        name for name in schema.get("required", [])
        if name.endswith(ID_SUFFIX) and name in properties
    ]


def find_primary_key(schema: Dict[str, Any], explicit: Optional[str] = None) -> Optional[str]:
    """
    Resolve the primary-key property of a record schema.

    An explicit column wins and must exist. Otherwise "id" is used when
    present, then a single required ``*_id`` property.

    Raises:
        SchemaSyncError: The explicit column is not a property
        NoPrimaryKeyError: Several ``*_id`` candidates and no explicit column
    """
    properties = schema.get("properties") or {}

    if explicit:
        if explicit not in properties:
            raise SchemaSyncError(
                f"Configured primary key '{explicit}' is not a property of the schema",
                context={"id_column": explicit, "properties": sorted(properties)}
            )
        return explicit

    if "id" in properties:
        return "id"

    candidates = primary_key_candidates(schema)
    if len(candidates) > 1:
        raise NoPrimaryKeyError(
            f"Ambiguous primary key: required properties {candidates} all look like keys. "
            f"Set id_column on the resource to choose one.",
            context={"candidates": candidates}
        )
    return candidates[0] if candidates else None


def ensure_id_field(schema: Dict[str, Any], explicit: Optional[str] = None) -> Dict[str, Any]:
    """
    Return a schema that has a primary-key property.

    When nothing resolves as a key, an optional string "id" property is
    prepended. The input schema is never mutated.
    """
    if find_primary_key(schema, explicit):
        return schema

    patched = copy.deepcopy(schema)
    patched["properties"] = {
        "id": {"type": "string", "description": "Unique identifier"},
        **(schema.get("properties") or {}),
    }
    patched["required"] = list(schema.get("required", []))
    return patched
