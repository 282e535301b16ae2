from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.core.config import get_settings


@dataclass(frozen=True)
class RenderedChallenge:
    image: str  # data URI
    answer: str
    difficulty: str


class ChallengeRenderer(ABC):
    @abstractmethod
    def render(self) -> RenderedChallenge:
        """Produce a fresh image and its expected answer."""
        ...


def get_renderer() -> ChallengeRenderer:
    settings = get_settings()
    if settings.captcha_renderer != "svg":
        raise ValueError(f"Unknown captcha renderer: {settings.captcha_renderer}")
    from app.challenges.svg import SvgChallengeRenderer
    return SvgChallengeRenderer(length=settings.captcha_length)
