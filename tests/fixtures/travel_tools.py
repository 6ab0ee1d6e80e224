"""Deterministic travel tools used across the test suite."""

from travelmaster.tools.base import BaseTool, ToolDefinition, ToolResult
from travelmaster.tools.capabilities import WorkerCapability


class FlightSearchTool(BaseTool):
    def __init__(self, price: int = 1200) -> None:
        self.price = price
        self.calls = []

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="flight_search",
            description="搜索航班",
            parameters={
                "type": "object",
                "properties": {
                    "origin": {"type": "string", "description": "出发城市"},
                    "destination": {"type": "string", "description": "到达城市"},
                    "date": {"type": "string", "description": "出发日期"},
                },
                "required": ["origin", "destination"],
            },
            capabilities=[WorkerCapability.FLIGHT_SEARCH],
        )

    async def execute(self, **kwargs) -> ToolResult:
        self.calls.append(dict(kwargs))
        return ToolResult.ok(f"CA1234 {kwargs['origin']}→{kwargs['destination']} 往返 ¥{self.price}")


class HotelSearchTool(BaseTool):
    def __init__(self, price: int = 450) -> None:
        self.price = price
        self.calls = []

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="hotel_search",
            description="搜索酒店",
            parameters={
                "type": "object",
                "properties": {
                    "city": {"type": "string", "description": "城市"},
                    "nights": {"type": "integer", "description": "入住晚数"},
                },
                "required": ["city"],
            },
            capabilities=[WorkerCapability.HOTEL_BOOKING],
        )

    async def execute(self, **kwargs) -> ToolResult:
        self.calls.append(dict(kwargs))
        return ToolResult.ok(f"{kwargs['city']}王府井酒店 每晚¥{self.price}")


class BrokenTool(BaseTool):
    """Always raises from execute."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(name="broken", description="always fails")

    async def execute(self, **kwargs) -> ToolResult:
        raise RuntimeError("backend down")
