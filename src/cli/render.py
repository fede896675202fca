from __future__ import annotations

from rich.console import Console

# Shared console for CLI output (not logging).
RENDER = Console(highlight=False)
