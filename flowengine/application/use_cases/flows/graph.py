"""Load a flow's graph snapshot for the graph rules."""

from __future__ import annotations

from flowengine.application.interfaces.repositories import (
    IFlowStateRepository,
    IFlowTransitionRepository,
)
from flowengine.application.services.graph_validator import FlowGraph
from flowengine.core.config import get_settings


async def load_flow_graph(
    state_repo: IFlowStateRepository,
    transition_repo: IFlowTransitionRepository,
    flow_id: str,
) -> FlowGraph:
    states = await state_repo.list_for_flow(flow_id)
    transitions = await transition_repo.list_for_flow(flow_id)
    return FlowGraph(flow_id=flow_id, states=tuple(states), transitions=tuple(transitions))


def start_state_config() -> dict:
    """Config stored on the START state created with every flow."""
    settings = get_settings()
    return {
        "is_terminal": False,
        "color": settings.start_state_color,
        "icon": settings.start_state_icon,
        "position": {
            "x": settings.start_state_position_x,
            "y": settings.start_state_position_y,
        },
    }


def state_config(config: dict | None, is_terminal: bool | None = None) -> dict:
    """Fill a state's config with display defaults; is_terminal overrides config."""
    settings = get_settings()
    merged = {
        "is_terminal": False,
        "color": settings.state_default_color,
        "icon": settings.state_default_icon,
        "position": {"x": 0, "y": 0},
        **(config or {}),
    }
    if is_terminal is not None:
        merged["is_terminal"] = is_terminal
    merged["is_terminal"] = bool(merged["is_terminal"])
    return merged
