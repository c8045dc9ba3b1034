"""
Jinja2 rendering for step fields.

Commands, working directories and responses may reference procedure
arguments and earlier steps' outputs:

    inline: cat {{ args.target_file }}
    inline: echo "{{ steps.whoami.stdout | trim }}"
"""

from functools import lru_cache
from typing import Any, Mapping, Optional

from jinja2 import Environment, StrictUndefined, TemplateError

from ttpcore.base.errors import TemplateRenderError


@lru_cache(maxsize=1)
def _get_environment() -> Environment:
    """Create and cache the Jinja2 environment."""
    return Environment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )


def render(text: Optional[str], variables: Mapping[str, Any], *, field: str = "field", step: str = "") -> str:
    """
    Render one templated field.

    Raises:
        TemplateRenderError: on syntax errors or references to unknown values
    """
    if not text:
        return text or ""
    if "{{" not in text and "{%" not in text:
        return text
    try:
        return _get_environment().from_string(text).render(**variables)
    except TemplateError as exc:
        raise TemplateRenderError(
            f"failed to render {field}: {exc}",
            details={"step": step, "field": field, "template": text},
        ) from exc
