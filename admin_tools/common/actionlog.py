from __future__ import annotations
import json
from datetime import datetime, timezone
from pathlib import Path
from admin_tools.common.env import env


def log_action(action: str, detail: dict, log_file: Path | None = None) -> None:
    """Append one JSON Lines record (timestamp + action + detail)."""
    path = log_file or Path(env("ADMIN_TOOLS_ACTION_LOG", "mailgroups.log"))
    record = {"ts": datetime.now(tz=timezone.utc).isoformat(), "action": action, **detail}
    with path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(record) + "\n")
