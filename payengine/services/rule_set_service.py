"""
PayEngine - Rule Set Loading

Validates stored or file-based rule tables into RuleSet objects.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from payengine.schemas.rules import RuleSet
from payengine.utils.error_handling import ConfigurationException

logger = logging.getLogger(__name__)


def parse_rule_set(payload: Dict[str, Any]) -> RuleSet:
    """Validate a rule table payload."""
    try:
        return RuleSet.model_validate(payload)
    except ValidationError as e:
        raise ConfigurationException(
            f"Invalid statutory rule set: {e.error_count()} validation errors",
            original_error=e,
        )


def load_rule_set_file(path: str) -> RuleSet:
    """Read a JSON rule table from disk."""
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationException(f"Cannot read rule set file {path}: {e}", original_error=e)
    rule_set = parse_rule_set(payload)
    logger.info(f"Loaded rule set {rule_set.name} v{rule_set.version} from {path}")
    return rule_set


@lru_cache(maxsize=8)
def default_rule_set(path: Optional[str]) -> Optional[RuleSet]:
    """Fallback rule set configured by file, if any."""
    if not path:
        return None
    return load_rule_set_file(path)
