"""
Tool definitions for realtime function calling.

A tool is declared either with typed ``ToolParameter`` entries or with a raw
JSON-schema ``parameters`` mapping (the shape the realtime API accepts
directly). Both export to the flat realtime schema sent in ``session.update``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..errors import ConfigurationError

# JSON-schema type -> accepted Python types for decoded arguments
_JSON_TYPES = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


@dataclass
class ToolParameter:
    """One named argument of a typed tool."""
    name: str
    type: str
    description: str = ""
    required: bool = False
    enum: Optional[List[Any]] = None
    default: Optional[Any] = None
    items: Optional[Dict[str, Any]] = None  # element schema when type == "array"

    def to_dict(self) -> Dict[str, Any]:
        """JSON-schema property for this parameter."""
        prop: Dict[str, Any] = {"type": self.type}
        if self.description:
            prop["description"] = self.description
        optional = {"enum": self.enum, "default": self.default, "items": self.items}
        prop.update({key: value for key, value in optional.items() if value is not None})
        return prop

    def accepts(self, value: Any) -> bool:
        expected = _JSON_TYPES.get(self.type)
        if expected is None:
            return True
        # bool is an int subclass; JSON keeps them apart
        if isinstance(value, bool) and self.type in ("integer", "number"):
            return False
        return isinstance(value, expected)


@dataclass
class ToolDefinition:
    """
    Tool exposed to the model.

    Attributes:
        name: Unique tool name the model calls
        description: What the tool does, shown to the model
        parameters: Typed parameters (ignored when ``schema`` is given)
        schema: Raw JSON-schema for the arguments object
        max_execution_time: Handler timeout in seconds, ``None`` for no limit
    """
    name: str
    description: str = ""
    parameters: List[ToolParameter] = field(default_factory=list)
    schema: Optional[Dict[str, Any]] = None
    max_execution_time: Optional[float] = None

    @classmethod
    def from_dict(cls, definition: Mapping[str, Any]) -> "ToolDefinition":
        """
        Build a definition from a realtime-style mapping.

        Example:
            ToolDefinition.from_dict({
                "name": "get_weather",
                "description": "Look up the weather",
                "parameters": {"type": "object", "properties": {...}},
            })

        Raises:
            ConfigurationError: If ``name`` is missing or empty
        """
        name = definition.get("name") if definition else None
        if not name:
            raise ConfigurationError("Missing tool name in definition")
        schema = definition.get("parameters")
        return cls(
            name=name,
            description=definition.get("description", ""),
            schema=dict(schema) if isinstance(schema, Mapping) else None,
            max_execution_time=definition.get("max_execution_time"),
        )

    def parameters_schema(self) -> Dict[str, Any]:
        if self.schema is not None:
            return self.schema
        return {
            "type": "object",
            "properties": {param.name: param.to_dict() for param in self.parameters},
            "required": [param.name for param in self.parameters if param.required],
        }

    def to_openai_realtime_schema(self) -> Dict[str, Any]:
        """Flat function entry for ``session.tools``."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters_schema(),
        }

    def validate_parameters(self, arguments: Any) -> bool:
        """
        Check decoded call arguments against the typed parameters.

        Raw-schema definitions are only checked for being an object; the
        server already constrains generation to the schema.

        Raises:
            ValueError: Arguments are not an object, a required parameter is
                missing, or a value has the wrong type or is outside its enum
        """
        if not isinstance(arguments, dict):
            raise ValueError("Tool arguments must be a JSON object")

        for param in self.parameters:
            if param.name not in arguments:
                if param.required:
                    raise ValueError(f"Missing required parameter: {param.name}")
                continue
            value = arguments[param.name]
            if not param.accepts(value):
                raise ValueError(f"Parameter {param.name} must be of type {param.type}")
            if param.enum and value not in param.enum:
                allowed = ", ".join(str(option) for option in param.enum)
                raise ValueError(f"Invalid value for {param.name}. Must be one of: {allowed}")
        return True
