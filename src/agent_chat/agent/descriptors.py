"""Tool descriptors: typed parameter schemas and invocation bindings."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, create_model, model_validator


class ParamKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


_PYTHON_TYPES: dict[ParamKind, Any] = {
    ParamKind.STRING: str,
    ParamKind.INTEGER: int,
    ParamKind.NUMBER: float,
    ParamKind.BOOLEAN: bool,
    ParamKind.OBJECT: dict[str, Any],
    ParamKind.ARRAY: list[Any],
}


class ParameterProperty(BaseModel):
    """One leaf of a tool's parameter schema."""

    model_config = ConfigDict(frozen=True)

    kind: ParamKind = ParamKind.STRING
    description: str = ""
    items: ParamKind | None = None
    enum: tuple[Any, ...] | None = None

    def python_type(self) -> Any:
        return _PYTHON_TYPES[self.kind]

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.kind.value}
        if self.description:
            schema["description"] = self.description
        if self.kind is ParamKind.ARRAY:
            schema["items"] = {"type": (self.items or ParamKind.STRING).value}
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema


class ParameterSchema(BaseModel):
    """Flat object schema: property name -> leaf, plus required names."""

    model_config = ConfigDict(frozen=True)

    properties: dict[str, ParameterProperty] = Field(default_factory=dict)
    required: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _required_are_declared(self) -> "ParameterSchema":
        missing = [name for name in self.required if name not in self.properties]
        if missing:
            raise ValueError(f"required parameters without a property: {missing}")
        return self

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {
            "type": "object",
            "properties": {
                name: prop.to_json_schema() for name, prop in self.properties.items()
            },
        }
        if self.required:
            schema["required"] = list(self.required)
        return schema


class OpenAPIBinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["openapi"] = "openapi"
    path: str
    base_url: str = ""


class ToolServerBinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tool_server"] = "tool_server"
    server: str
    tool: str


class RetrievalBinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["retrieval"] = "retrieval"
    agent_id: str
    top_k: int = Field(default=1, ge=1)


InvocationBinding = Annotated[
    Union[OpenAPIBinding, ToolServerBinding, RetrievalBinding],
    Field(discriminator="kind"),
]


class ToolDescriptor(BaseModel):
    """Immutable description of one callable tool."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str
    parameters: ParameterSchema = Field(default_factory=ParameterSchema)
    binding: InvocationBinding

    def with_base_url(self, base_url: str) -> "ToolDescriptor":
        if not isinstance(self.binding, OpenAPIBinding):
            return self
        return self.model_copy(
            update={"binding": self.binding.model_copy(update={"base_url": base_url})}
        )

    def to_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters.to_json_schema(),
            },
        }


def build_args_model(descriptor: ToolDescriptor) -> type[BaseModel]:
    """Create the pydantic model used to validate a tool's arguments.

    Property names are carried as aliases, so names that are not valid Python
    identifiers (`page-size`, `from`, `_id`) validate and dump unchanged.
    Undeclared arguments are passed through.
    """

    fields: dict[str, Any] = {}
    required = set(descriptor.parameters.required)
    for position, (name, prop) in enumerate(descriptor.parameters.properties.items()):
        annotation = prop.python_type()
        if name in required:
            fields[f"arg_{position}"] = (
                annotation,
                Field(..., alias=name, description=prop.description or None),
            )
        else:
            fields[f"arg_{position}"] = (
                annotation | None,
                Field(default=None, alias=name, description=prop.description or None),
            )

    return create_model(
        "ToolArguments",
        __config__=ConfigDict(extra="allow", populate_by_name=True),
        **fields,
    )
