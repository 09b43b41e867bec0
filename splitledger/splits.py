from splitledger.errors import ValidationError
from splitledger.models import SPLIT_TYPES
from splitledger.money import allocate_by_weight, distribute_evenly
from splitledger.schemas import SplitIn


def _explicit_amounts(splits: list[SplitIn]) -> list[int] | None:
    if all(s.amount is not None for s in splits):
        return [s.amount for s in splits]
    return None


def calculate_split(total: int, split_type: str, splits: list[SplitIn]) -> list[int]:
    """Calculate each participant's share of an expense, in input order.

    equal: floor division, the first total % n participants pay one cent more.
    exact: the amounts given by the caller.
    percentage / shares: the amounts given by the caller if every participant
    has one, otherwise derived from the weights.
    """
    if split_type not in SPLIT_TYPES:
        raise ValidationError(f"Unknown split type: {split_type}")
    if not splits:
        raise ValidationError("At least one participant is required")

    if split_type == "equal":
        return distribute_evenly(total, len(splits))

    amounts = _explicit_amounts(splits)
    if amounts is not None:
        return amounts

    if split_type == "exact":
        raise ValidationError("Exact splits need an amount for every participant")

    if split_type == "percentage":
        if any(s.percentage is None for s in splits):
            raise ValidationError("Percentage splits need a percentage for every participant")
        if abs(sum(s.percentage for s in splits) - 100) > 1e-6:
            raise ValidationError("Percentages must add up to 100")
        return allocate_by_weight(total, [s.percentage for s in splits])

    if any(s.shares is None for s in splits):
        raise ValidationError("Share splits need a share count for every participant")
    if sum(s.shares for s in splits) <= 0:
        raise ValidationError("Total shares must be positive")
    return allocate_by_weight(total, [s.shares for s in splits])


def validate_split(total: int, splits: list[SplitIn], amounts: list[int]) -> None:
    """Reject splits that could not be applied to the ledger as-is."""
    user_ids = [s.user_id for s in splits]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError("Duplicate users found in splits")
    if any(a < 0 for a in amounts):
        raise ValidationError("Split amounts cannot be negative")
    if sum(amounts) != total:
        raise ValidationError("Sum of split amounts must equal total amount")
