"""Terminal output with optional ANSI colors."""

import os
import sys
from typing import Optional, TextIO

GREEN = '\033[0;32m'
BLUE = '\033[0;34m'
YELLOW = '\033[1;33m'
RED = '\033[0;31m'
NC = '\033[0m'

BOX_WIDTH = 51


def color_supported(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class Console:
    """Writes the workflow's banners, boxes and instructions."""

    def __init__(self, stream: Optional[TextIO] = None, color: Optional[bool] = None):
        self.stream = stream or sys.stdout
        self.color = color_supported(self.stream) if color is None else color

    def paint(self, text: str, color: str) -> str:
        if not self.color:
            return text
        return f"{color}{text}{NC}"

    def line(self, text: str = "", color: Optional[str] = None) -> None:
        print(self.paint(text, color) if color else text, file=self.stream)

    def lines(self, text: str) -> None:
        for line in text.rstrip("\n").split("\n"):
            self.line(line)

    def label(self, name: str, value: str, color: str = GREEN) -> None:
        self.line(f"{self.paint(name + ':', color)} {value}")

    def banner(self, title: str, color: str = BLUE) -> None:
        rule = "═" * 59
        self.line(rule, color)
        self.line(f"    {title}", color)
        self.line(rule, color)
        self.line()

    def box(self, title: str, color: str = YELLOW) -> None:
        inner = f"  {title}".ljust(BOX_WIDTH)
        self.line("╔" + "═" * BOX_WIDTH + "╗", color)
        self.line(f"║{inner}║", color)
        self.line("╚" + "═" * BOX_WIDTH + "╝", color)
        self.line()

    def section(self, title: str, color: str = BLUE) -> None:
        self.line(f"━━━ {title} ━━━", color)

    def rule(self) -> None:
        self.line("─" * BOX_WIDTH)

    def steps(self, heading: str, items) -> None:
        self.line(heading)
        for number, item in enumerate(items, 1):
            self.line(f"{number}. {item}")
        self.line()

    def warn(self, text: str) -> None:
        self.line(text, YELLOW)

    def error(self, text: str) -> None:
        print(self.paint(text, RED), file=sys.stderr)
