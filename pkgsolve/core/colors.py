"""Color output support for conflict messages.

Color palette:
  - Red: unavailable / conflicting packages
  - Green: installable packages
  - Blue: contextual information

Unlike a CLI, the library keeps no global color state: callers decide per
call, usually through should_color().
"""

import os
import sys
from typing import Optional, TextIO

# ANSI color codes
_COLORS = {
    'reset': '\033[0m',
    'bold': '\033[1m',
    'red': '\033[91m',
    'green': '\033[92m',
    'blue': '\033[94m',
    'dim': '\033[2m',
}


def should_color(stream: Optional[TextIO] = None, nocolor: bool = False) -> bool:
    """Decide whether output written to stream should be colored.

    Args:
        stream: Output stream (defaults to sys.stdout)
        nocolor: If True, disable colors unconditionally
    """
    if nocolor:
        return False
    if os.environ.get('NO_COLOR'):
        # Respect NO_COLOR environment variable (https://no-color.org/)
        return False
    stream = stream or sys.stdout
    return hasattr(stream, 'isatty') and stream.isatty()


def wrap(text: str, color: str, enabled: bool = True) -> str:
    """Wrap text with color codes if enabled."""
    if not enabled:
        return text
    code = _COLORS.get(color, '')
    return f"{_COLORS['bold']}{code}{text}{_COLORS['reset']}"


def available(text: str, enabled: bool = True) -> str:
    """Format text as installable (green)."""
    return wrap(text, 'green', enabled)


def unavailable(text: str, enabled: bool = True) -> str:
    """Format text as unavailable (red)."""
    return wrap(text, 'red', enabled)


def info(text: str, enabled: bool = True) -> str:
    """Format text as info (blue)."""
    return wrap(text, 'blue', enabled)
