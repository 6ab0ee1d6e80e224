"""
Base Tool - Abstract base class for all tools.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from travelmaster.errors import MissingParameterError, ToolError
from travelmaster.tools.capabilities import WorkerCapability


@dataclass
class ToolResult:
    """Result from tool execution. Exactly one of output/error is meaningful."""

    output: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    execution_time_ms: float = 0

    @classmethod
    def ok(cls, output: str, **metadata: Any) -> "ToolResult":
        return cls(output=output, metadata=metadata)

    @classmethod
    def fail(cls, error: str, **metadata: Any) -> "ToolResult":
        return cls(error=error, metadata=metadata)

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "execution_time_ms": self.execution_time_ms,
            "metadata": self.metadata,
        }


class ToolDefinition(BaseModel):
    """Tool definition for registration."""

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})  # JSON Schema
    capabilities: List[WorkerCapability] = Field(default_factory=list)
    returns: str = "text"

    @property
    def required(self) -> List[str]:
        return list(self.parameters.get("required", []) or [])

    def to_schema(self) -> Dict[str, Any]:
        """OpenAI function-calling schema."""
        parameters = dict(self.parameters or {})
        parameters.setdefault("type", "object")
        parameters.setdefault("properties", {})
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class BaseTool(ABC):
    """
    Abstract base class for TravelMaster tools.

    All tools must implement:
    - definition: Tool metadata and parameter schema
    - execute: Core execution logic
    """

    @property
    @abstractmethod
    def definition(self) -> ToolDefinition:
        """Get tool definition."""

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult:
        """
        Execute the tool.

        Args:
            **kwargs: Tool-specific parameters

        Returns:
            ToolResult with execution outcome
        """

    def validate_params(self, params: Dict[str, Any]) -> None:
        """
        Check that every required parameter is present.

        Raises:
            MissingParameterError: Naming the first missing parameter
        """
        for param in self.definition.required:
            value = params.get(param)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise MissingParameterError(param)

    async def safe_execute(self, params: Optional[Dict[str, Any]] = None) -> ToolResult:
        """
        Execute with validation and error handling.

        Never raises: bad arguments, including names that collide with the
        `execute` signature, come back as a failed result.
        """
        params = dict(params or {})
        start_time = time.time()
        name = self.definition.name

        try:
            self.validate_params(params)
            result = await self.execute(**params)
        except MissingParameterError as e:
            result = ToolResult.fail(str(e), error_type="missing_parameter", parameter=e.parameter)
        except ToolError as e:
            result = ToolResult.fail(str(e), error_type=type(e).__name__)
        except Exception as e:
            logger.warning(f"Tool {name} raised: {e}")
            result = ToolResult.fail(f"{type(e).__name__}: {e}", error_type="execution_failed")

        result.execution_time_ms = (time.time() - start_time) * 1000
        return result

    # Argument helpers: models send numbers and booleans as strings often enough

    @staticmethod
    def get_string(params: Dict[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
        value = params.get(key)
        if value is None:
            return default
        return str(value)

    @staticmethod
    def get_number(params: Dict[str, Any], key: str, default: Optional[float] = None) -> Optional[float]:
        value = params.get(key)
        if isinstance(value, bool):
            return default
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                return default
        return default

    @staticmethod
    def get_boolean(params: Dict[str, Any], key: str, default: Optional[bool] = None) -> Optional[bool]:
        value = params.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "1"):
                return True
            if lowered in ("false", "no", "0"):
                return False
        return default
