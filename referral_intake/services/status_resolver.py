from __future__ import annotations

from referral_intake.models.schemas import ReferralStatus


def resolve_status(is_referral: bool) -> ReferralStatus:
    # Non-referrals are kept as rejected so reviewers can audit false negatives.
    # Acceptance is always a later human action.
    return ReferralStatus.PENDING if is_referral else ReferralStatus.REJECTED
