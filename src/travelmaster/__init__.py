"""
TravelMaster - Agentic travel-planning orchestration engine

Routes requests by intent, decomposes complex ones into typed tasks, runs
specialized tool-calling workers and synthesizes one structured answer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"
__author__ = "TravelMaster Team"

if TYPE_CHECKING:
    from travelmaster.core.app import TravelMasterApp as TravelMasterApp

__all__ = ["TravelMasterApp", "__version__"]


def __getattr__(name: str):
    # Lazy import to avoid pulling in every component when importing submodules.
    if name == "TravelMasterApp":
        from travelmaster.core.app import TravelMasterApp  # local import

        return TravelMasterApp
    raise AttributeError(name)
