"""Persisted, user-editable list of flag rules (JSON file)."""

import json
import logging
from pathlib import Path
from typing import List, Sequence, Union

from pydantic import TypeAdapter

from profile_flags.models import FlagRule

logger = logging.getLogger(__name__)

_RULE_LIST = TypeAdapter(List[FlagRule])


def load_rules(path: Union[str, Path]) -> List[FlagRule]:
    """
    Read and validate the rule list.

    Args:
        path: JSON file holding a list of rules

    Returns:
        Rules in file order (empty if the file does not exist)

    Raises:
        ValueError: if the file is not valid JSON or a rule is malformed
    """
    path = Path(path)
    if not path.exists():
        logger.info("No flag rules file at %s", path)
        return []

    raw = path.read_text(encoding='utf-8')
    if not raw.strip():
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Flag rules file {path} is not valid JSON: {e}") from e

    # pydantic's ValidationError is a ValueError subclass
    rules = _RULE_LIST.validate_python(data)
    logger.info("Loaded %d flag rules from %s", len(rules), path)
    return rules


def save_rules(path: Union[str, Path], rules: Sequence[FlagRule]) -> None:
    """Write the whole rule list, replacing the file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [rule.model_dump(mode='json') for rule in rules]
    path.write_text(json.dumps(payload, indent=2), encoding='utf-8')
    logger.info("Saved %d flag rules to %s", len(rules), path)


def active_rules(rules: Sequence[FlagRule]) -> List[FlagRule]:
    return [rule for rule in rules if rule.is_active]
