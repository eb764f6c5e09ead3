from __future__ import annotations

import uuid


def new_run_id() -> str:
    """Run ids double as directory names under the run root."""
    return uuid.uuid4().hex
