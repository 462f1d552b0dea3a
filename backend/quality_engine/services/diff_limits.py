import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n... (diff truncated for analysis)"

# Character budgets (not tokens) per model family.
MODEL_DIFF_BUDGETS: Dict[str, int] = {
    "gpt-3.5-turbo": 3000,
    "gpt-4": 5000,
    "gpt-4o-mini": 5000,
    "gpt-4.1-nano": 5000,
    "gpt-4-turbo": 10000,
    "gpt-4o": 10000,
    "gpt-4.1-mini": 10000,
    "o3-mini": 10000,
    "gpt-4.1": 15000,
}

MIN_DIFF_BUDGET = min(MODEL_DIFF_BUDGETS.values())


def diff_budget_for_model(model: Optional[str]) -> int:
    """Return the diff character budget for a model identifier.

    Exact names win, then the longest known prefix (for dated snapshots like
    ``gpt-4o-2024-08-06``). Anything unknown gets the smallest budget.
    """
    if not model or not isinstance(model, str):
        return MIN_DIFF_BUDGET

    name = model.strip().lower()
    if name in MODEL_DIFF_BUDGETS:
        return MODEL_DIFF_BUDGETS[name]

    prefixes = [known for known in MODEL_DIFF_BUDGETS if name.startswith(known)]
    if prefixes:
        return MODEL_DIFF_BUDGETS[max(prefixes, key=len)]
    return MIN_DIFF_BUDGET


def truncate_diff(diff: str, model: Optional[str]) -> str:
    """Hard-cut a diff to the model budget and append the truncation marker."""
    budget = diff_budget_for_model(model)
    if len(diff) <= budget:
        return diff
    logger.info(f"Diff too large ({len(diff)} chars), truncating to {budget} for model {model}")
    return diff[:budget] + TRUNCATION_MARKER
