"""Coffee label extraction on top of the vision client."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from prometheus_client import Counter

from .errors import AnalysisError, BadRequestError
from .models.user import utcnow
from .parsing import extract_json_object
from .vision import DEFAULT_MEDIA_TYPE, VisionClient

logger = logging.getLogger(__name__)

COFFEE_LABEL_PROMPT = """Analyze this coffee bag and extract the following information as JSON:
{
  "name": "coffee name or farm name",
  "origin": "country and region",
  "process": "processing method (washed, natural, honey, etc)",
  "cultivar": "variety/cultivar",
  "altitude": "altitude in masl",
  "roaster": "roaster name",
  "tastingNotes": "tasting notes"
}

Only return valid JSON, no other text."""

LABEL_DEFAULTS = {
    "name": "Unknown",
    "origin": "Unknown",
    "process": "washed",
    "cultivar": "Unknown",
    "altitude": "1500",
    "roaster": "Unknown",
    "tastingNotes": "No notes",
}

ANALYSIS_COUNTER = Counter(
    "coffee_analyses_total", "Coffee label analyses by outcome", ["outcome"]
)


def _as_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value if item)
    return str(value)


def normalize_label(
    raw: Dict[str, Any], added_at: Optional[datetime] = None
) -> Dict[str, str]:
    """Fill missing label fields with defaults and stamp ``addedDate``."""
    label = {}
    for field, default in LABEL_DEFAULTS.items():
        value = raw.get(field)
        label[field] = (_as_text(value) if value else "") or default
    label["addedDate"] = (added_at or utcnow()).isoformat() + "Z"
    return label


def analyze_coffee_image(
    client: VisionClient, image_data: Optional[str], media_type: Optional[str]
) -> Dict[str, str]:
    """Extract structured coffee data from a base64 encoded photo."""
    if not image_data:
        raise BadRequestError("Image data required")

    try:
        reply = client.describe_image(
            image_data, media_type or DEFAULT_MEDIA_TYPE, COFFEE_LABEL_PROMPT
        )
        label = normalize_label(extract_json_object(reply))
    except AnalysisError as exc:
        ANALYSIS_COUNTER.labels(outcome=type(exc).__name__).inc()
        logger.error("analyze error (%s): %s", type(exc).__name__, exc)
        raise

    ANALYSIS_COUNTER.labels(outcome="success").inc()
    logger.info("analyzed coffee label name=%s", label["name"])
    return label
