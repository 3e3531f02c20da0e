"""Deterministic referral codes.

A signup's code is derived from its normalized email, so re-ingesting the
same address always hands back the same code. Codes are not checked for
collisions against existing entries.
"""

import string

REFERRAL_PREFIX = "hs_"
CODE_LENGTH = 6

_BASE36 = string.digits + string.ascii_lowercase


def rolling_hash(text: str) -> int:
    """Signed 32-bit ``h = h * 31 + unit`` over the UTF-16 code units of text.

    Matches the hash the web frontend computes, so codes generated on either
    side agree.
    """
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def code_for(email: str) -> str:
    """Return the referral code for an already-normalized email.

    Args:
        email: Trimmed, lowercased email address

    Returns:
        Code like ``hs_2p0000``
    """
    encoded = to_base36(abs(rolling_hash(email)))
    return REFERRAL_PREFIX + encoded[:CODE_LENGTH].ljust(CODE_LENGTH, "0")


# Minimum referral count for each tier, highest first
REWARD_TIERS = (
    (25, "Founding Member"),
    (10, "Champion"),
    (5, "Grower"),
    (3, "Sprout"),
    (1, "Seed"),
)
NO_REWARD_TIER = "No referrals yet"


def reward_tier(referrals: int) -> str:
    for threshold, tier in REWARD_TIERS:
        if referrals >= threshold:
            return tier
    return NO_REWARD_TIER
