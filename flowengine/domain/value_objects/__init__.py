"""Domain value objects: actor identity and task/transition outcomes."""

from flowengine.domain.value_objects.core import Actor
from flowengine.domain.value_objects.results import RestrictionResult, TransitionResult

__all__ = ["Actor", "RestrictionResult", "TransitionResult"]
