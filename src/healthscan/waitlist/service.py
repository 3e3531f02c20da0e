"""Waitlist service: signup ingestion, confirmation and admin operations.

``ingest`` is the single entry point for both signup channels. It
validates and normalizes the email, returns the stored entry untouched
for repeat signups, and otherwise assigns a position and referral code,
persists the entry and hands the side effects to the background
dispatcher. A signup is reported successful as soon as its entry is
stored; email and notification failures only show up in the logs.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from pydantic import ValidationError

from healthscan.confirmation.tokens import ConfirmationTokenManager, TokenErrorKind
from healthscan.email.service import EmailService
from healthscan.errors import EntryNotFound, InvalidInput, NotificationFailure, StorageFailure
from healthscan.logging_config import get_logger
from healthscan.notifications.dispatcher import BackgroundDispatcher
from healthscan.notifications.slack import SignupEvent, SlackNotifier
from healthscan.storage.kv import KVStore
from healthscan.waitlist.models import (
    USER_PREFIX,
    IngestResult,
    SignupRequest,
    WaitlistEntry,
    normalize_email,
    user_key,
    utcnow,
)
from healthscan.waitlist.positions import PositionAssigner
from healthscan.waitlist.referral import code_for, reward_tier

logger = get_logger(__name__)

# Entry fields an admin update may not change
IMMUTABLE_FIELDS = {"email", "position", "referralCode"}

# Entry fields anyone who knows the email may read
PUBLIC_STATUS_FIELDS = (
    "email",
    "name",
    "position",
    "referralCode",
    "signupDate",
    "confirmed",
    "emailConfirmedAt",
    "referrals",
)


def _update_key_aliases() -> dict[str, str]:
    aliases = {}
    for name, field in WaitlistEntry.model_fields.items():
        alias = field.alias or name
        aliases[name] = alias
        aliases[alias] = alias
    return aliases


@dataclass
class ConfirmResult:
    """Outcome of following a confirmation link."""

    email: str | None = None
    position: int | None = None
    already_confirmed: bool = False
    entry: WaitlistEntry | None = None
    error: TokenErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WaitlistService:
    """Coordinates signups and everything that hangs off a waitlist entry."""

    def __init__(
        self,
        kv: KVStore,
        tokens: ConfirmationTokenManager,
        email_service: EmailService,
        notifier: SlackNotifier,
        dispatcher: BackgroundDispatcher,
    ):
        self.kv = kv
        self.positions = PositionAssigner(kv)
        self.tokens = tokens
        self.email_service = email_service
        self.notifier = notifier
        self.dispatcher = dispatcher

    # ==================== LOOKUP ====================

    def find_entry(self, email: str) -> WaitlistEntry | None:
        record = self.kv.get(user_key(email))
        if record is None:
            return None
        return WaitlistEntry.from_record(record)

    def get_entry(self, email: str) -> WaitlistEntry:
        """Return the entry for email, raising EntryNotFound."""
        normalized = normalize_email(email)
        entry = self.find_entry(normalized)
        if entry is None:
            raise EntryNotFound("Email not found in waitlist", details=normalized)
        return entry

    def save_entry(self, entry: WaitlistEntry) -> None:
        self.kv.set(user_key(entry.email), entry.to_record())

    def total(self) -> int:
        return self.kv.count_by_prefix(USER_PREFIX)

    def list_entries(self) -> list[WaitlistEntry]:
        """All entries ordered by position. Unreadable records are skipped."""
        entries = []
        for record in self.kv.get_by_prefix(USER_PREFIX):
            try:
                entries.append(WaitlistEntry.from_record(record))
            except ValidationError as e:
                logger.warning("waitlist_record_unreadable", error=str(e))
        return sorted(entries, key=lambda entry: entry.position)

    def user_status(self, email: str) -> dict[str, Any]:
        entry = self.get_entry(email)
        record = entry.to_record()
        user = {field: record[field] for field in PUBLIC_STATUS_FIELDS}
        return {"user": user, "totalWaitlist": self.total()}

    # ==================== INGEST ====================

    async def ingest(self, request: SignupRequest) -> IngestResult:
        """Add a signup to the waitlist, or return the existing entry.

        Raises:
            InvalidInput: Email missing or malformed
            StorageFailure: The store could not be read or written
        """
        email = normalize_email(request.email)

        existing = self.find_entry(email)
        if existing is not None:
            logger.info("waitlist_signup_repeat", email=email, position=existing.position)
            return IngestResult(
                position=existing.position,
                referral_code=existing.referral_code,
                already_exists=True,
                entry=existing,
                total_waitlist=self.total(),
            )

        position = self.positions.next_position()
        referred_by = (request.referral_code or "").strip() or None

        entry = WaitlistEntry(
            email=email,
            name=(request.name or "").strip() or email.split("@")[0],
            first_name=request.first_name,
            last_name=request.last_name,
            position=position,
            referral_code=code_for(email),
            referred_by=referred_by,
            source=request.source,
            signup_date=request.signup_date or utcnow(),
            opted_in_updates=request.opted_in_updates,
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            utm_source=request.utm_source,
            utm_medium=request.utm_medium,
            utm_campaign=request.utm_campaign,
            provenance=request.provenance,
        )
        self.save_entry(entry)
        self.positions.record(position)
        total = max(position, self.total())

        logger.info(
            "waitlist_signup",
            email=email,
            position=position,
            source=entry.source.value,
            referred_by=referred_by,
        )

        self._schedule_confirmation(entry)
        self._schedule_notification(entry, total)
        if referred_by and referred_by != entry.referral_code:
            self.dispatcher.submit(
                f"referral_credit#{position}",
                self._credit_job(referred_by),
            )

        return IngestResult(
            position=position,
            referral_code=entry.referral_code,
            already_exists=False,
            entry=entry,
            total_waitlist=total,
        )

    # ==================== SIDE EFFECTS ====================

    def _schedule_confirmation(self, entry: WaitlistEntry) -> bool:
        if not self.email_service.enabled:
            return False

        email, name = entry.email, entry.name
        position, code = entry.position, entry.referral_code

        async def job() -> None:
            sent = await self.email_service.send_waitlist_confirmation(email, name, position, code)
            if not sent:
                raise NotificationFailure("Confirmation email was not accepted")
            self._count_email_sent(email)

        self.dispatcher.submit(f"confirmation_email#{position}", job)
        return True

    def _schedule_notification(self, entry: WaitlistEntry, total: int) -> None:
        if not self.notifier.enabled:
            return

        event = SignupEvent(
            email=entry.email,
            position=entry.position,
            referral_code=entry.referral_code,
            source=entry.source.value,
            total_waitlist=total,
            name=entry.name,
            referred_by=entry.referred_by,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            signup_date=entry.signup_date,
        )

        async def job() -> None:
            if not await self.notifier.notify_signup(event):
                raise NotificationFailure("Signup notification was not delivered")

        self.dispatcher.submit(f"signup_notification#{entry.position}", job)

    def _credit_job(self, referral_code: str):
        async def job() -> None:
            self.credit_referrer(referral_code)

        return job

    def record_email_sent(self, email: str) -> None:
        """Bump the sent-email counter on an entry."""
        entry = self.find_entry(email)
        if entry is None:
            return
        entry.emails_sent += 1
        entry.last_email_sent = utcnow()
        self.save_entry(entry)

    def _count_email_sent(self, email: str) -> None:
        # The email is already out; a retry would send it twice
        try:
            self.record_email_sent(email)
        except StorageFailure as e:
            logger.error("email_sent_counter_failed", email=email, error=e.message)

    def find_by_referral_code(self, referral_code: str) -> WaitlistEntry | None:
        for entry in self.list_entries():
            if entry.referral_code == referral_code:
                return entry
        return None

    def credit_referrer(self, referral_code: str) -> bool:
        """Count one referral for the owner of referral_code.

        Returns:
            False if no entry owns the code
        """
        owner = self.find_by_referral_code(referral_code)
        if owner is None:
            logger.info("referral_code_unknown", referral_code=referral_code)
            return False
        owner.referrals += 1
        owner.last_referral_date = utcnow()
        self.save_entry(owner)
        logger.info("referral_credited", referral_code=referral_code, referrals=owner.referrals)
        return True

    # ==================== CONFIRMATION ====================

    async def confirm_email(self, token: str) -> ConfirmResult:
        """Mark the entry named by token as confirmed.

        Token problems come back in ``ConfirmResult.error``.

        Raises:
            EntryNotFound: The token is valid but its email has no entry
        """
        validation = self.tokens.validate(token)
        if not validation.valid:
            logger.info("email_confirmation_rejected", reason=validation.error.value)
            return ConfirmResult(error=validation.error)

        email = validation.email
        entry = self.find_entry(email)
        if entry is None:
            raise EntryNotFound("Email not found in waitlist", details=email)

        if entry.confirmed:
            self.tokens.forget(token)
            return ConfirmResult(
                email=email, position=entry.position, already_confirmed=True, entry=entry
            )

        entry.confirmed = True
        entry.email_confirmed_at = utcnow()
        self.save_entry(entry)
        self.tokens.forget(token)
        logger.info("email_confirmed", email=email, position=entry.position)

        if self.email_service.enabled:
            name, position = entry.name, entry.position

            async def job() -> None:
                if not await self.email_service.send_email_confirmed(email, name, position):
                    raise NotificationFailure("Confirmed email was not accepted")
                self._count_email_sent(email)

            self.dispatcher.submit(f"email_confirmed#{position}", job)

        return ConfirmResult(email=email, position=entry.position, entry=entry)

    async def resend_confirmation(self, email: str) -> dict[str, Any]:
        """Send a fresh confirmation link to an unconfirmed entry."""
        entry = self.get_entry(email)
        if entry.confirmed:
            return {"alreadyConfirmed": True, "scheduled": False}
        scheduled = self._schedule_confirmation(entry)
        if not scheduled:
            logger.warning("confirmation_resend_skipped", email=entry.email, reason="email_disabled")
        return {"alreadyConfirmed": False, "scheduled": scheduled}

    # ==================== STATS ====================

    def stats(self) -> dict[str, Any]:
        entries = self.list_entries()
        total = len(entries)
        confirmed = sum(1 for entry in entries if entry.confirmed)
        cutoff = utcnow() - timedelta(hours=24)
        recent = sum(
            1
            for entry in entries
            if entry.signup_date.tzinfo is not None and entry.signup_date >= cutoff
        )
        return {
            "totalUsers": total,
            "confirmedUsers": confirmed,
            "recentSignups": recent,
            "conversionRate": round(confirmed / total * 100, 1) if total else 0.0,
            "highestPosition": self.positions.high_water_mark(),
        }

    # ==================== ADMIN ====================

    def update_entry(self, email: str, updates: dict[str, Any]) -> WaitlistEntry:
        """Apply updates to an entry. Identity fields are ignored.

        Keys may be camelCase or snake_case field names.

        Raises:
            EntryNotFound: No entry for email
            InvalidInput: An update key names no entry field, or the merged
                entry is not valid
        """
        entry = self.get_entry(email)

        aliases = _update_key_aliases()
        unknown = sorted(key for key in updates if key not in aliases)
        if unknown:
            raise InvalidInput("Unknown fields in update", details=", ".join(unknown))
        changes = {aliases[key]: value for key, value in updates.items()}

        ignored = sorted(set(changes) & IMMUTABLE_FIELDS)
        if ignored:
            logger.warning("waitlist_update_ignored_fields", email=entry.email, fields=ignored)

        record = entry.to_record()
        record.update({key: value for key, value in changes.items() if key not in IMMUTABLE_FIELDS})
        try:
            updated = WaitlistEntry.from_record(record)
        except ValidationError as e:
            raise InvalidInput("Invalid update", details=str(e.errors()[0]["msg"])) from e

        self.save_entry(updated)
        logger.info("waitlist_entry_updated", email=entry.email, fields=sorted(updates))
        return updated

    def delete_entry(self, email: str) -> WaitlistEntry:
        """Remove an entry. Other entries keep their positions."""
        entry = self.get_entry(email)
        self.kv.delete(user_key(entry.email))
        logger.warning("waitlist_entry_deleted", email=entry.email, position=entry.position)
        return entry

    def bulk_update(self, items: list[dict[str, Any]]) -> dict[str, Any]:
        updated = 0
        failed = []
        for item in items:
            email = item.get("email")
            try:
                self.update_entry(email, item.get("updates") or {})
                updated += 1
            except (EntryNotFound, InvalidInput) as e:
                failed.append({"email": email, "error": e.message})
        return {"updated": updated, "failed": failed}

    def bulk_delete(self, emails: list[str]) -> dict[str, Any]:
        deleted = 0
        failed = []
        for email in emails:
            try:
                self.delete_entry(email)
                deleted += 1
            except (EntryNotFound, InvalidInput) as e:
                failed.append({"email": email, "error": e.message})
        return {"deleted": deleted, "failed": failed}

    # ==================== REFERRALS ====================

    def referral_leaderboard(self, limit: int = 10) -> list[dict[str, Any]]:
        """Entries with at least one referral, most referrals first."""
        ranked = sorted(
            (entry for entry in self.list_entries() if entry.referrals > 0),
            key=lambda entry: (-entry.referrals, entry.position),
        )
        return [
            {
                "rank": rank,
                "name": entry.name,
                "referralCode": entry.referral_code,
                "referrals": entry.referrals,
                "position": entry.position,
            }
            for rank, entry in enumerate(ranked[:limit], start=1)
        ]

    def referral_stats(self, referral_code: str) -> dict[str, Any]:
        entries = self.list_entries()
        owner = next((entry for entry in entries if entry.referral_code == referral_code), None)
        if owner is None:
            raise EntryNotFound("Referral code not found", details=referral_code)
        referred = [entry for entry in entries if entry.referred_by == referral_code]
        return {
            "referralCode": referral_code,
            "name": owner.name,
            "position": owner.position,
            "referrals": owner.referrals,
            "rewardTier": reward_tier(owner.referrals),
            "lastReferralDate": owner.to_record()["lastReferralDate"],
            "referredUsers": [
                {
                    "name": entry.name,
                    "position": entry.position,
                    "confirmed": entry.confirmed,
                    "signupDate": entry.to_record()["signupDate"],
                }
                for entry in referred
            ],
        }
