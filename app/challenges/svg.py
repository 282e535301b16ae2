import base64
import secrets

from app.challenges.base import ChallengeRenderer, RenderedChallenge

# No 0/O, 1/l/I: too easy to confuse once distorted.
ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"
COLORS = ("#2a4d69", "#4b86b4", "#8b3a3a", "#2e8b57", "#6a5acd", "#b8860b")


def difficulty_for(length: int) -> str:
    if length <= 4:
        return "easy"
    if length <= 5:
        return "medium"
    return "hard"


class SvgChallengeRenderer(ChallengeRenderer):
    """Coloured, rotated glyphs over noise curves, served as an SVG data URI."""

    def __init__(self, length: int = 5, width: int = 180, height: int = 60, noise: int = 3) -> None:
        self.length = length
        self.width = width
        self.height = height
        self.noise = noise
        self._rng = secrets.SystemRandom()

    def render(self) -> RenderedChallenge:
        text = "".join(self._rng.choice(ALPHABET) for _ in range(self.length))
        svg = self._svg(text)
        image = "data:image/svg+xml;base64," + base64.b64encode(svg.encode("utf-8")).decode("ascii")
        return RenderedChallenge(image=image, answer=text, difficulty=difficulty_for(self.length))

    def _svg(self, text: str) -> str:
        w, h, rng = self.width, self.height, self._rng
        parts = [
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{w}" height="{h}" viewBox="0 0 {w} {h}">',
            '<rect width="100%" height="100%" fill="#f9f9f9"/>',
        ]
        for _ in range(self.noise):
            parts.append(
                f'<path d="M{rng.randint(0, w // 4)} {rng.randint(0, h)} '
                f'C{rng.randint(0, w)} {rng.randint(0, h)},{rng.randint(0, w)} {rng.randint(0, h)},'
                f'{rng.randint(3 * w // 4, w)} {rng.randint(0, h)}" '
                f'stroke="{rng.choice(COLORS)}" fill="none" stroke-width="{rng.randint(1, 3)}"/>'
            )
        # TODO: emit glyph outlines as paths so the answer cannot be read from <text> nodes.
        step = w / (len(text) + 1)
        for i, ch in enumerate(text):
            x = round(step * (i + 1) + rng.uniform(-4, 4), 1)
            y = round(h * 0.65 + rng.uniform(-6, 6), 1)
            angle = rng.randint(-25, 25)
            parts.append(
                f'<text x="{x}" y="{y}" fill="{rng.choice(COLORS)}" font-size="{rng.randint(26, 34)}" '
                f'font-family="monospace" text-anchor="middle" transform="rotate({angle} {x} {y})">{ch}</text>'
            )
        parts.append("</svg>")
        return "".join(parts)
