"""Infrastructure services: SQL flow picker and background dispatcher."""

from flowengine.infrastructure.services.background_dispatcher import (
    AsyncioBackgroundDispatcher,
)
from flowengine.infrastructure.services.flow_picker import FlowPicker

__all__ = ["AsyncioBackgroundDispatcher", "FlowPicker"]
