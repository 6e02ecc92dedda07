from typing import Optional
from pydantic import BaseModel, Field

from concert_finder.schemas.enums import Animation


class Pattern(BaseModel):
    primary: str = Field(..., pattern="^[0-9A-Fa-f]{6}$")   # hex, no '#'
    secondary: Optional[str] = Field(None, pattern="^[0-9A-Fa-f]{6}$")
    animation: Animation
    speed: int = Field(..., ge=1, le=5)


def patterns_collide(a: Pattern, b: Pattern, speed_tolerance: int = 1) -> bool:
    """
    Two patterns read as the same thing in a crowd when primary color and
    animation match and their speeds are within `speed_tolerance`.
    Secondary color does not take part.
    """
    return (
        a.primary == b.primary
        and a.animation == b.animation
        and abs(a.speed - b.speed) <= speed_tolerance
    )
