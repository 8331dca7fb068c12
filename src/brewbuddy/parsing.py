import json
import re
from typing import Any, Dict

from .errors import ParseError

_CODE_FENCE = re.compile(r"```[a-zA-Z]*\s*(.*?)```", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Return the body of the first markdown code block, or ``text`` as is."""
    match = _CODE_FENCE.search(text)
    return match.group(1) if match else text


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the JSON object embedded in free-form model output.

    Parameters
    ----------
    text: str
        Model reply, possibly wrapped in a code fence or surrounded by prose.

    Returns
    -------
    dict
        The object spanning from the first ``{`` to the last ``}``.

    Raises
    ------
    ParseError
        If there is no such span or it is not valid JSON.
    """
    if not text:
        raise ParseError("empty model reply")
    match = _JSON_OBJECT.search(strip_code_fence(text))
    if not match:
        raise ParseError("no JSON object in model reply")
    try:
        return json.loads(match.group(0))
    except ValueError as exc:
        raise ParseError(f"invalid JSON in model reply: {exc}") from exc
