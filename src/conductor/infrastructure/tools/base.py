"""Base class for tools."""

import inspect
from abc import ABC, abstractmethod
from typing import Any

_JSON_TYPES = {int: "integer", bool: "boolean", float: "number", dict: "object", list: "array"}


class Tool(ABC):
    """
    A callable tool offered to the model.

    Subclasses implement name, description and execute(); the parameter
    schema is derived from execute()'s signature unless overridden.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    def requires_approval(self) -> bool:
        return False

    @property
    def parameters_schema(self) -> dict[str, Any]:
        """Override to provide a custom JSON schema for the parameters."""
        return self._generate_schema_from_signature()

    def _generate_schema_from_signature(self) -> dict[str, Any]:
        sig = inspect.signature(self.execute)
        properties: dict[str, Any] = {}
        required = []

        for param_name, param in sig.parameters.items():
            if param.kind in (inspect.Parameter.VAR_KEYWORD, inspect.Parameter.VAR_POSITIONAL):
                continue
            properties[param_name] = {
                "type": _JSON_TYPES.get(param.annotation, "string"),
                "description": f"Parameter {param_name}",
            }
            if param.default is inspect.Parameter.empty:
                required.append(param_name)

        return {"type": "object", "properties": properties, "required": required}

    @abstractmethod
    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        ...
