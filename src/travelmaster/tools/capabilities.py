"""
Worker capabilities and the keyword heuristic that guesses them for tools.

Inference only aids discovery (`ToolRegistry.by_capability`, guides); it is
never used to decide whether a dispatch is valid.
"""

from enum import Enum
from typing import Dict, Set, Tuple


class WorkerCapability(str, Enum):
    """Closed set of capability tags a worker or tool can declare."""
    FLIGHT_SEARCH = "flight_search"
    HOTEL_BOOKING = "hotel_booking"
    ROUTE_PLANNING = "route_planning"
    BUDGET_PLANNING = "budget_planning"
    TEXT_GENERATION = "text_generation"
    DATA_ANALYSIS = "data_analysis"
    WEB_SEARCH = "web_search"
    TRAVEL_PLANNING = "travel_planning"
    GENERAL = "general"


CAPABILITY_KEYWORDS: Dict[WorkerCapability, Tuple[str, ...]] = {
    WorkerCapability.FLIGHT_SEARCH: ("flight", "航班", "机票"),
    WorkerCapability.HOTEL_BOOKING: ("hotel", "酒店", "住宿"),
    WorkerCapability.ROUTE_PLANNING: ("route", "路线", "导航", "地图"),
    WorkerCapability.BUDGET_PLANNING: ("budget", "预算", "费用"),
    WorkerCapability.TRAVEL_PLANNING: ("travel", "旅行", "旅游", "行程"),
    WorkerCapability.WEB_SEARCH: ("web", "网页", "网络搜索"),
}


def infer_capabilities(name: str, description: str = "") -> Set[WorkerCapability]:
    """
    Guess capabilities from a tool's name and description.

    Returns:
        Matching capabilities, or {GENERAL} when nothing matches
    """
    text = f"{name} {description}".lower()
    found = {
        capability
        for capability, keywords in CAPABILITY_KEYWORDS.items()
        if any(keyword in text for keyword in keywords)
    }
    return found or {WorkerCapability.GENERAL}
