"""Role-aware deal entry.

The controller validates locally and asks the store for one insert. It
never touches the aggregate: the inserting client sees its own deal the
same way every other client does, through the change feed.

The rep-may-only-enter-own-deals check here is guidance for the user.
The platform's access policy is authoritative, so InsertRejected can
still come back even when local validation passed (stale role data).
"""

from __future__ import annotations

from typing import Any

import structlog

from src.salesboard.core.errors import InsertRejected, ValidationError
from src.salesboard.core.monitoring import deal_submissions_total
from src.salesboard.platform.base import DealStore
from src.salesboard.sales.schemas import AccountType, NewDeal, UserProfile

logger = structlog.get_logger(__name__)


def parse_deal_value(raw: Any) -> int:
    """Coerce form input to a positive integer or raise ValidationError."""
    if isinstance(raw, bool):
        raise ValidationError("Deal value must be a whole number.")

    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float):
        if not raw.is_integer():
            raise ValidationError("Deal value must be a whole number.")
        value = int(raw)
    elif isinstance(raw, str):
        text = raw.strip()
        try:
            value = int(text)
        except ValueError:
            raise ValidationError("Deal value must be a whole number.") from None
    else:
        raise ValidationError("Deal value must be a whole number.")

    if value <= 0:
        raise ValidationError("Deal value must be greater than zero.")
    return value


class DealFormController:
    """Collects rep/value for a new deal and submits it to the store.

    Args:
        store: DealStore receiving the insert.
    """

    def __init__(self, store: DealStore) -> None:
        self._store = store

    @staticmethod
    def rep_choices(acting_user: UserProfile, profiles: list[UserProfile]) -> list[UserProfile]:
        """Reps selectable in the form for this user.

        A rep only ever sees themself. An admin picks from every ``rep``
        profile, sorted by name.
        """
        if acting_user.account_type == AccountType.REP:
            return [acting_user]
        reps = [p for p in profiles if p.account_type == AccountType.REP]
        return sorted(reps, key=lambda p: (p.name.lower(), p.id))

    async def submit(self, acting_user: UserProfile, target_rep_id: str, value: Any) -> str:
        """Validate and insert one deal; returns the new deal id.

        Raises:
            ValidationError: Bad value, missing rep, or a rep entering a deal
                for someone else. Raised before any store call.
            InsertRejected: The store denied the insert.
        """
        try:
            amount = parse_deal_value(value)
            rep_id = (target_rep_id or "").strip()
            if not rep_id:
                raise ValidationError("Choose a representative for this deal.")
            if acting_user.account_type == AccountType.REP and rep_id != acting_user.id:
                raise ValidationError("Reps can only enter their own deals.")
        except ValidationError:
            deal_submissions_total.labels(result="validation_error").inc()
            raise

        try:
            deal = await self._store.insert_deal(NewDeal(rep_id=rep_id, value=amount))
        except InsertRejected as exc:
            deal_submissions_total.labels(result="insert_rejected").inc()
            logger.warning(
                "deal_form.insert_rejected",
                acting_user=acting_user.id,
                rep_id=rep_id,
                reason=exc.message,
            )
            raise

        deal_submissions_total.labels(result="inserted").inc()
        logger.info(
            "deal_form.inserted",
            acting_user=acting_user.id,
            rep_id=rep_id,
            deal_id=deal.id,
            value=amount,
        )
        return deal.id
