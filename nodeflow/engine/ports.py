"""
Port and type model.

Nodes declare typed input and output ports. Port types are plain string
tags with a small compatibility table, so that a connection between two
ports can be checked before it is added to a workflow.
"""

from typing import Any, Callable, Dict, Optional, Tuple
from dataclasses import dataclass
from enum import Enum


class PortType(str, Enum):
    """Semantic data types carried by ports."""
    ANY = "any"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    JSON = "json"
    HTTP_RESPONSE = "http_response"
    HTML = "html"
    FILE = "file"
    TRIGGER = "trigger"
    CODE = "code"
    AI_MESSAGE = "ai_message"
    AI_RESPONSE = "ai_response"


# Python types accepted for values flowing through a port
_VALUE_TYPES: Dict[PortType, Tuple[type, ...]] = {
    PortType.STRING: (str,),
    PortType.NUMBER: (int, float),
    PortType.BOOLEAN: (bool,),
    PortType.OBJECT: (dict,),
    PortType.ARRAY: (list, tuple),
    PortType.HTML: (str,),
    PortType.CODE: (str,),
    PortType.AI_MESSAGE: (str,),
}

# One-way conversions allowed in addition to identical types and ANY
_CONVERSIONS: Dict[PortType, Tuple[PortType, ...]] = {
    PortType.JSON: (PortType.OBJECT,),
    PortType.OBJECT: (PortType.JSON,),
    PortType.HTTP_RESPONSE: (PortType.OBJECT, PortType.JSON, PortType.STRING),
    PortType.AI_RESPONSE: (PortType.STRING,),
}


def is_compatible(source_type: PortType, target_type: PortType) -> bool:
    """Check whether data of source_type may flow into a target_type port."""
    source_type = PortType(source_type)
    target_type = PortType(target_type)
    if source_type == target_type:
        return True
    if PortType.ANY in (source_type, target_type):
        return True
    return target_type in _CONVERSIONS.get(source_type, ())


def value_matches(port_type: PortType, value: Any) -> bool:
    """Check that a runtime value fits the declared port type."""
    expected = _VALUE_TYPES.get(PortType(port_type))
    if expected is None:
        return True
    if PortType(port_type) == PortType.NUMBER and isinstance(value, bool):
        return False
    return isinstance(value, expected)


@dataclass
class InputPort:
    """An input slot on a node."""
    port_id: str
    port_type: PortType = PortType.ANY
    required: bool = False
    default: Any = None
    description: str = ""

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.port_id,
            "type": PortType(self.port_type).value,
            "required": self.required,
            "default": self.default,
            "description": self.description,
        }


@dataclass
class OutputPort:
    """
    An output slot on a node.

    The optional condition receives the produced value and the execution
    context; when it returns False the value is withheld from downstream
    nodes connected to this port.
    """
    port_id: str
    port_type: PortType = PortType.ANY
    description: str = ""
    condition: Optional[Callable[[Any, Any], bool]] = None

    def emits(self, value: Any, context: Any) -> bool:
        if self.condition is None:
            return True
        return bool(self.condition(value, context))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.port_id,
            "type": PortType(self.port_type).value,
            "description": self.description,
            "conditional": self.condition is not None,
        }
