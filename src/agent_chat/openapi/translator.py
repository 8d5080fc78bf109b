"""Translate OpenAPI documents into read-only tool descriptors."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from agent_chat.agent.descriptors import (
    OpenAPIBinding,
    ParameterProperty,
    ParameterSchema,
    ParamKind,
    ToolDescriptor,
)
from agent_chat.errors import InvalidOpenAPIDocument

logger = logging.getLogger(__name__)

_SAFE_METHOD = "get"
_ARGUMENT_LOCATIONS = {"query", "path"}
_JSON_CONTENT_TYPE = "application/json"
_MAX_REF_DEPTH = 16


def translate_openapi(document: Any) -> list[ToolDescriptor]:
    """Build one tool descriptor per `get` operation of an OpenAPI document.

    Mutating operations are never exposed. Parameter properties come from the
    operation's query/path parameters and from the `application/json` request
    body schema; a body property replaces a parameter of the same name.

    Raises:
        InvalidOpenAPIDocument: when the document has no usable `paths` map or
            an operation is not an object.
    """

    if not isinstance(document, Mapping):
        raise InvalidOpenAPIDocument("OpenAPI document must be an object")
    paths = document.get("paths")
    if not isinstance(paths, Mapping):
        raise InvalidOpenAPIDocument("OpenAPI document has no 'paths' object")

    tools: list[ToolDescriptor] = []
    for path, path_item in paths.items():
        if not isinstance(path_item, Mapping):
            raise InvalidOpenAPIDocument(f"Path item for {path!r} must be an object")
        for method, operation in path_item.items():
            if method == "parameters" or method.lower() != _SAFE_METHOD:
                continue
            if not isinstance(operation, Mapping):
                raise InvalidOpenAPIDocument(
                    f"Operation {method.upper()} {path} must be an object"
                )
            tools.append(_translate_operation(document, str(path), method, operation))

    logger.info(f"Translated OpenAPI document into {len(tools)} tools")
    return tools


def parameter_schema_from_json_schema(
    schema: Any, *, document: Mapping[str, Any] | None = None
) -> ParameterSchema:
    """Flatten an object JSON schema into a `ParameterSchema`."""

    resolved = _resolve(document, schema)
    if not isinstance(resolved, Mapping):
        return ParameterSchema()

    properties: dict[str, ParameterProperty] = {}
    raw_properties = resolved.get("properties") or {}
    if isinstance(raw_properties, Mapping):
        for name, prop_schema in raw_properties.items():
            properties[str(name)] = _property_from_schema(document, prop_schema)

    required = _known_required(resolved.get("required"), properties)
    return ParameterSchema(properties=properties, required=tuple(required))


def _translate_operation(
    document: Mapping[str, Any],
    path: str,
    method: str,
    operation: Mapping[str, Any],
) -> ToolDescriptor:
    name = operation.get("operationId") or f"{method}_{path.replace('/', '_')}"
    description = (
        operation.get("summary")
        or operation.get("description")
        or f"{method.upper()} {path}"
    )

    properties: dict[str, ParameterProperty] = {}
    required: list[str] = []

    for raw_param in operation.get("parameters") or []:
        param = _resolve(document, raw_param)
        if not isinstance(param, Mapping) or "name" not in param:
            continue
        if param.get("in", "query") not in _ARGUMENT_LOCATIONS:
            continue
        param_name = str(param["name"])
        schema = _resolve(document, param.get("schema") or {})
        prop = _property_from_schema(document, schema)
        properties[param_name] = prop.model_copy(
            update={"description": str(param.get("description") or prop.description)}
        )
        if param.get("required"):
            required.append(param_name)

    body_schema = _json_body_schema(document, operation)
    if body_schema is not None:
        body = parameter_schema_from_json_schema(body_schema, document=document)
        properties.update(body.properties)
        required.extend(body.required)

    try:
        return ToolDescriptor(
            name=str(name),
            description=str(description),
            parameters=ParameterSchema(
                properties=properties,
                required=tuple(_known_required(required, properties)),
            ),
            binding=OpenAPIBinding(path=path),
        )
    except ValidationError as exc:
        raise InvalidOpenAPIDocument(
            f"Operation {method.upper()} {path} cannot be used as a tool: {exc}"
        ) from exc


def _json_body_schema(
    document: Mapping[str, Any], operation: Mapping[str, Any]
) -> Any | None:
    body = _resolve(document, operation.get("requestBody"))
    if not isinstance(body, Mapping):
        return None
    content = body.get("content")
    if not isinstance(content, Mapping):
        return None
    media = content.get(_JSON_CONTENT_TYPE)
    if not isinstance(media, Mapping):
        return None
    return media.get("schema")


def _property_from_schema(
    document: Mapping[str, Any] | None, raw_schema: Any
) -> ParameterProperty:
    schema = _resolve(document, raw_schema)
    if not isinstance(schema, Mapping):
        return ParameterProperty()

    kind = _infer_kind(schema)
    items: ParamKind | None = None
    if kind is ParamKind.ARRAY:
        item_schema = _resolve(document, schema.get("items"))
        items = _infer_kind(item_schema) if isinstance(item_schema, Mapping) else None

    enum = schema.get("enum")
    return ParameterProperty(
        kind=kind,
        description=str(schema.get("description") or ""),
        items=items,
        enum=tuple(enum) if isinstance(enum, list) and enum else None,
    )


def _infer_kind(schema: Mapping[str, Any]) -> ParamKind:
    declared = schema.get("type")
    if isinstance(declared, list):
        declared = next((value for value in declared if value != "null"), None)
    if isinstance(declared, str):
        try:
            return ParamKind(declared)
        except ValueError:
            return ParamKind.STRING
    if "properties" in schema:
        return ParamKind.OBJECT
    if "items" in schema:
        return ParamKind.ARRAY
    return ParamKind.STRING


def _known_required(
    names: Any, properties: Mapping[str, ParameterProperty]
) -> list[str]:
    if not isinstance(names, list):
        return []
    ordered: list[str] = []
    for name in names:
        name = str(name)
        if name in properties and name not in ordered:
            ordered.append(name)
    return ordered


def _resolve(document: Mapping[str, Any] | None, node: Any) -> Any:
    """Follow local `$ref` pointers (`#/components/...`) inside the document."""

    depth = 0
    while isinstance(node, Mapping) and isinstance(node.get("$ref"), str):
        ref = node["$ref"]
        if document is None or not ref.startswith("#/"):
            return {}
        depth += 1
        if depth > _MAX_REF_DEPTH:
            raise InvalidOpenAPIDocument(f"Reference cycle at {ref!r}")
        target: Any = document
        for part in ref[2:].split("/"):
            part = part.replace("~1", "/").replace("~0", "~")
            if not isinstance(target, Mapping) or part not in target:
                raise InvalidOpenAPIDocument(f"Unresolvable reference {ref!r}")
            target = target[part]
        node = target
    return node
