"""Actor value object (who caused a transition)."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """Identity supplied by the caller; flowengine never authenticates it."""

    actor_type: str
    actor_id: str

    def __post_init__(self) -> None:
        if not self.actor_type or not self.actor_id:
            raise ValueError("Actor requires both actor_type and actor_id")
