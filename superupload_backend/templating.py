from __future__ import annotations

import html
import logging
import re
from pathlib import Path
from typing import Any, Mapping

from .sessions import Session


logger = logging.getLogger(__name__)

_VARIABLE_RE = re.compile(r"\{\{(.*?)\}\}")


class TemplateUnavailable(Exception):
    pass


def _lookup(variables: Mapping[str, Any], dotted: str) -> Any:
    keys = dotted.strip().split(".")
    value: Any = variables.get(keys[0])
    for key in keys[1:]:
        if value is None:
            break
        if isinstance(value, Mapping):
            value = value.get(key)
        else:
            value = getattr(value, key, None)
    return value


def expand(template: str, variables: Mapping[str, Any]) -> str:
    """Expand {{foo.bar.baz}} references. Values are HTML-escaped.

    Unknown references expand to an empty string.
    """

    def repl(m: re.Match) -> str:
        value = _lookup(variables, m.group(1))
        if value is None:
            return ""
        return html.escape(str(value))

    return _VARIABLE_RE.sub(repl, template)


def session_view(session: Session) -> dict:
    return {
        "id": session.id,
        "progress": session.progress_fraction(),
        "upload": session.upload.describe() if session.upload else None,
    }


def load_template(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.error("cannot read template %s: %s", path, e)
        raise TemplateUnavailable(f"cannot read template {path.name}: {e.__class__.__name__}") from e
