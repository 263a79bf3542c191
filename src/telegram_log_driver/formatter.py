"""Message template rendering.

Templates use ``{name}`` placeholders. Built-in names describe the log line
and its container; any extra attribute selected through the ``labels``/``env``
options is available under its own name. Unknown placeholders are kept as-is
so a typo shows up in the chat instead of dropping the message.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from .options import ContainerDetails

TELEGRAM_MESSAGE_LIMIT = 4096

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][\w.\-]*)\}")


class MessageFormatter:
    """Render log lines for one container."""

    def __init__(self, template: str, details: ContainerDetails, attrs: Mapping[str, str]) -> None:
        self.template = template
        self._static: Dict[str, str] = dict(attrs)
        self._static.update(
            {
                "container_id": details.short_id,
                "container_full_id": details.container_id,
                "container_name": details.name,
                "image_name": details.container_image_name,
                "image_id": details.container_image_id,
                "daemon_name": details.daemon_name,
            }
        )

    def format(self, line: str, timestamp: Optional[datetime] = None, source: str = "") -> str:
        when = timestamp or datetime.now(tz=timezone.utc)
        values = dict(self._static)
        values.update(
            {
                "log": line,
                "timestamp": when.astimezone(timezone.utc).isoformat(),
                "source": source,
            }
        )

        def _substitute(match: re.Match[str]) -> str:
            return values.get(match.group(1), match.group(0))

        return _PLACEHOLDER.sub(_substitute, self.template)


def split_message(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> List[str]:
    """Split ``text`` into chunks no longer than ``limit`` characters.

    Cuts at the last newline inside the window when there is one.
    """

    if limit <= 0:
        raise ValueError("limit must be positive")
    chunks: List[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit + 1)
        if cut <= 0:
            chunks.append(remaining[:limit])
            remaining = remaining[limit:]
        else:
            chunks.append(remaining[:cut])
            remaining = remaining[cut + 1 :]
    if remaining or not chunks:
        chunks.append(remaining)
    return chunks
