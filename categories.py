from typing import Optional, Union

from rapidfuzz.distance import Levenshtein

from models import TransactionType


EXPENSE_CATEGORIES: tuple[str, ...] = (
    "Food",
    "Transportation",
    "Housing",
    "Utilities",
    "Entertainment",
    "Healthcare",
    "Shopping",
    "Other",
)

INCOME_CATEGORIES: tuple[str, ...] = (
    "Salary",
    "Freelance",
    "Investments",
    "Gift",
    "Other",
)

FALLBACK_CATEGORY = "Other"


def categories_for(txn_type: Union[TransactionType, str]) -> tuple[str, ...]:
    try:
        kind = TransactionType(txn_type)
    except ValueError:
        return ()
    if kind == TransactionType.income:
        return INCOME_CATEGORIES
    return EXPENSE_CATEGORIES


def validate_category(category: str, txn_type: Union[TransactionType, str]) -> bool:
    return category in categories_for(txn_type)


def snap_category(
    raw: Optional[str], txn_type: Union[TransactionType, str] = TransactionType.expense
) -> str:
    """Map a free-text category onto the allow-list for ``txn_type``.

    Exact case-insensitive matches win; otherwise the closest name within one
    edit is used when it is unambiguous. Anything else becomes ``Other``.
    """
    allowed = categories_for(txn_type)
    needle = (raw or "").strip().lower()
    if not needle or not allowed:
        return FALLBACK_CATEGORY

    for name in allowed:
        if name.lower() == needle:
            return name

    best_distance: Optional[int] = None
    best: list[str] = []
    for name in allowed:
        dist = int(Levenshtein.distance(needle, name.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [name]
        elif dist == best_distance:
            best.append(name)

    if best_distance is not None and best_distance <= 1 and len(best) == 1:
        return best[0]
    return FALLBACK_CATEGORY
