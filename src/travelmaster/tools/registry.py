"""
Tool Registry - Central registry for all tools.

Manages tool registration, discovery and execution. Registration happens
once at startup; afterwards the registry is read-shared by every agent.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from langchain_core.tools import BaseTool as LangChainBaseTool
from langchain_core.tools import StructuredTool
from loguru import logger
from pydantic import Field, create_model

from travelmaster.tools.base import BaseTool, ToolDefinition, ToolResult
from travelmaster.tools.capabilities import WorkerCapability, infer_capabilities


@dataclass
class ToolUsage:
    calls: int = 0
    failures: int = 0
    total_time_ms: float = 0.0

    @property
    def average_time_ms(self) -> float:
        return self.total_time_ms / self.calls if self.calls else 0.0


class ToolRegistry:
    """
    Central registry for TravelMaster tools.

    Features:
    - Tool registration and discovery
    - Capability lookup (declared, or inferred from name/description)
    - OpenAI schema and LangChain tool conversion
    - Execution that never raises: failures come back as ToolResult.error
    """

    def __init__(self):
        self._tools: Dict[str, BaseTool] = {}
        self._definitions: Dict[str, ToolDefinition] = {}
        self._capabilities: Dict[str, Set[WorkerCapability]] = {}
        self._usage: Dict[str, ToolUsage] = {}
        self._revision = 0
        self._lc_tool_cache: Dict[str, LangChainBaseTool] = {}

        logger.debug("ToolRegistry created")

    @property
    def revision(self) -> int:
        return self._revision

    def register(self, tool: BaseTool) -> None:
        """Register a tool."""
        definition = tool.definition
        if definition.name in self._tools:
            logger.warning(f"Replacing already registered tool: {definition.name}")

        self._tools[definition.name] = tool
        self._definitions[definition.name] = definition
        self._capabilities[definition.name] = (
            set(definition.capabilities)
            or infer_capabilities(definition.name, definition.description)
        )
        self._usage.setdefault(definition.name, ToolUsage())
        self._bump_revision()
        logger.debug(
            f"Registered tool: {definition.name} "
            f"({', '.join(sorted(c.value for c in self._capabilities[definition.name]))})"
        )

    def register_all(self, tools: Iterable[BaseTool]) -> None:
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> bool:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            del self._definitions[name]
            del self._capabilities[name]
            self._bump_revision()
            return True
        return False

    def _bump_revision(self) -> None:
        self._revision += 1
        self._lc_tool_cache.clear()

    def get_tool(self, name: str) -> Optional[BaseTool]:
        """Get a tool by name."""
        return self._tools.get(name)

    def get_definition(self, name: str) -> Optional[ToolDefinition]:
        """Get a tool definition by name."""
        return self._definitions.get(name)

    @property
    def names(self) -> List[str]:
        return sorted(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_tools(
        self,
        capability: Optional[WorkerCapability] = None,
        *,
        allowlist: Optional[Set[str]] = None,
    ) -> List[ToolDefinition]:
        """
        List registered tools.

        Args:
            capability: Filter by capability
            allowlist: Only include these tool names

        Returns:
            List of tool definitions, sorted by name
        """
        definitions = [self._definitions[n] for n in sorted(self._definitions)]
        if allowlist is not None:
            allowed = set(allowlist)
            definitions = [d for d in definitions if d.name in allowed]

        if capability:
            definitions = [d for d in definitions if capability in self._capabilities[d.name]]

        return definitions

    def capabilities_of(self, name: str) -> Set[WorkerCapability]:
        return set(self._capabilities.get(name, set()))

    def by_capability(self, capability: WorkerCapability) -> List[BaseTool]:
        return [self._tools[d.name] for d in self.list_tools(capability)]

    def to_schemas(self, allowlist: Optional[Set[str]] = None) -> List[Dict[str, Any]]:
        """OpenAI function-calling schemas for the (allowed) tools."""
        return [d.to_schema() for d in self.list_tools(allowlist=allowlist)]

    def search(self, keywords: Sequence[str]) -> List[ToolDefinition]:
        """Tools whose name or description contains any of the keywords."""
        wanted = [k.lower() for k in keywords if k]
        return [
            d for d in self.list_tools()
            if any(k in d.name.lower() or k in d.description.lower() for k in wanted)
        ]

    def generate_guide(self, allowlist: Optional[Set[str]] = None) -> str:
        """Human/model-readable description of the available tools."""
        definitions = self.list_tools(allowlist=allowlist)
        if not definitions:
            return "当前没有可用工具。"

        lines = ["可用工具："]
        for d in definitions:
            lines.append(f"- {d.name}: {d.description}")
            props = d.parameters.get("properties", {}) or {}
            required = set(d.required)
            for prop_name, prop_info in props.items():
                info = prop_info if isinstance(prop_info, dict) else {}
                marker = "必填" if prop_name in required else "可选"
                lines.append(
                    f"    · {prop_name} ({info.get('type', 'string')}, {marker}): {info.get('description', '')}"
                )
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_tool_args(args: Any) -> Dict[str, Any]:
        """Normalize tool arguments to a dict."""
        if args is None:
            return {}
        if isinstance(args, str):
            try:
                parsed = json.loads(args)
                return parsed if isinstance(parsed, dict) else {"input": parsed}
            except ValueError:
                return {"input": args}
        if isinstance(args, dict):
            return args
        return {"input": args}

    async def execute(
        self,
        name: str,
        params: Any = None,
        *,
        allowlist: Optional[Set[str]] = None,
    ) -> ToolResult:
        """
        Execute a tool.

        Never raises for tool-level problems: unknown tools, missing
        parameters and tool exceptions all come back as `ToolResult.error`.

        Args:
            name: Tool name
            params: Arguments (dict or JSON string)
            allowlist: Restrict resolution to these names

        Returns:
            Tool result
        """
        tool = self._tools.get(name)
        if tool is None or (allowlist is not None and name not in allowlist):
            available = self.names if allowlist is None else [n for n in self.names if n in allowlist]
            logger.warning(f"Unknown tool requested: {name}")
            return ToolResult.fail(
                f"Tool '{name}' not found. Available tools: {', '.join(available) or 'none'}",
                error_type="unknown_tool",
                available_tools=available,
            )

        args = self._normalize_tool_args(params)
        logger.debug(f"Executing tool {name} with {args}")
        result = await tool.safe_execute(args)

        usage = self._usage.setdefault(name, ToolUsage())
        usage.calls += 1
        usage.total_time_ms += result.execution_time_ms
        if not result.success:
            usage.failures += 1
            logger.warning(f"Tool {name} failed: {result.error}")

        return result

    async def execute_batch(
        self,
        calls: Sequence[Tuple[str, Any]],
        *,
        allowlist: Optional[Set[str]] = None,
    ) -> List[ToolResult]:
        """Execute several tools concurrently; results keep the input order."""
        return list(await asyncio.gather(*[
            self.execute(name, params, allowlist=allowlist) for name, params in calls
        ]))

    def usage_stats(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {
                "calls": usage.calls,
                "failures": usage.failures,
                "average_time_ms": round(usage.average_time_ms, 2),
            }
            for name, usage in sorted(self._usage.items())
        }

    # ------------------------------------------------------------------
    # LangChain
    # ------------------------------------------------------------------

    def to_langchain_tools(self, *, allowlist: Optional[Set[str]] = None) -> List[LangChainBaseTool]:
        """
        Convert registered tools to LangChain tools.

        Returns:
            List of LangChain-compatible tools
        """
        wanted = set(allowlist) if allowlist is not None else set(self._tools)
        out: List[LangChainBaseTool] = []

        for name in sorted(wanted):
            if name not in self._tools:
                continue
            cached = self._lc_tool_cache.get(name)
            if cached is None:
                cached = self._build_langchain_tool(self._definitions[name])
                self._lc_tool_cache[name] = cached
            out.append(cached)

        return out

    def _build_langchain_tool(self, definition: ToolDefinition) -> LangChainBaseTool:
        tool_name = definition.name

        async def executor(**kwargs):
            args = {k: v for k, v in kwargs.items() if v is not None}
            result = await self.execute(tool_name, args)
            if result.success:
                return result.output or ""
            return f"Error: {result.error}"

        return StructuredTool.from_function(
            coroutine=executor,
            name=definition.name,
            description=definition.description,
            args_schema=self._args_schema(definition),
        )

    @staticmethod
    def _args_schema(definition: ToolDefinition):
        props = definition.parameters.get("properties", {}) or {}
        required = set(definition.required)

        fields: Dict[str, Any] = {}
        for prop_name, prop_info in props.items():
            info = prop_info if isinstance(prop_info, dict) else {}
            prop_type: Any = {"integer": int, "number": float, "boolean": bool}.get(info.get("type"), str)

            default_val = info.get("default", ...)
            if prop_name not in required and default_val is ...:
                default_val = None
                prop_type = Optional[prop_type]

            fields[prop_name] = (prop_type, Field(default=default_val, description=info.get("description", "")))

        return create_model(f"{definition.name}Args", **fields)
