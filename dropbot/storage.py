from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from .errors import PersistenceError
from .models import Claim, CountdownEntry, RewardEntry, ScheduleConfig

_CONDITIONAL_FAILED = "ConditionalCheckFailedException"


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == _CONDITIONAL_FAILED


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code", "Unknown")
        raise PersistenceError(f"Failed to {action} ({code})") from exc
    except BotoCoreError as exc:
        raise PersistenceError(f"Failed to {action}: {exc}") from exc


class DropStorage:
    """Single-table DynamoDB access for schedules, rewards, claims and countdowns."""

    def __init__(self, table) -> None:
        self._table = table

    def ensure_table(self) -> None:
        if self._table is None:
            raise PersistenceError("Drop table is not configured")

    def _query_prefix(self, pk: str, sk_prefix: str) -> list[dict[str, object]]:
        query_kwargs: dict[str, object] = {
            "KeyConditionExpression": Key("pk").eq(pk)
            & Key("sk").begins_with(sk_prefix),
            "Select": "ALL_ATTRIBUTES",
        }
        items: list[dict[str, object]] = []
        while True:
            resp = self._table.query(**query_kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            query_kwargs["ExclusiveStartKey"] = last_key

    def _scan(self, condition) -> list[dict[str, object]]:
        scan_kwargs: dict[str, object] = {"FilterExpression": condition}
        items: list[dict[str, object]] = []
        while True:
            resp = self._table.scan(**scan_kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            scan_kwargs["ExclusiveStartKey"] = last_key

    # ----- Schedule -----
    def get_schedule(self, guild_id: int) -> ScheduleConfig | None:
        self.ensure_table()
        with _store_errors(f"load schedule for guild {guild_id}"):
            resp = self._table.get_item(Key=ScheduleConfig.key(guild_id))
        item = resp.get("Item")
        if not item:
            return None
        return ScheduleConfig.from_item(item)

    def save_schedule(self, config: ScheduleConfig) -> None:
        self.ensure_table()
        with _store_errors(f"save schedule for guild {config.guild_id}"):
            self._table.put_item(Item=config.to_item())

    def set_next_fire(
        self, guild_id: int, next_fire_at: int | None, *, updated_at: int
    ) -> bool:
        """Update the next drop time; ``False`` when the schedule no longer exists."""
        self.ensure_table()
        if next_fire_at is None:
            update = "SET updated_at = :now REMOVE next_fire_at"
            values: dict[str, object] = {":now": updated_at}
        else:
            update = "SET next_fire_at = :next, updated_at = :now"
            values = {":next": int(next_fire_at), ":now": updated_at}
        with _store_errors(f"update next drop for guild {guild_id}"):
            try:
                self._table.update_item(
                    Key=ScheduleConfig.key(guild_id),
                    UpdateExpression=update,
                    ConditionExpression="attribute_exists(pk)",
                    ExpressionAttributeValues=values,
                )
            except ClientError as exc:
                if _is_conditional_failure(exc):
                    return False
                raise
        return True

    def delete_schedule(self, guild_id: int) -> None:
        self.ensure_table()
        with _store_errors(f"delete schedule for guild {guild_id}"):
            self._table.delete_item(Key=ScheduleConfig.key(guild_id))

    def list_schedules(self) -> list[ScheduleConfig]:
        self.ensure_table()
        with _store_errors("scan schedules"):
            items = self._scan(Attr("sk").eq(ScheduleConfig.SK_VALUE))
        return [ScheduleConfig.from_item(item) for item in items]

    # ----- Reward catalog -----
    def list_rewards(self, guild_id: int) -> list[RewardEntry]:
        self.ensure_table()
        with _store_errors(f"load rewards for guild {guild_id}"):
            items = self._query_prefix(
                RewardEntry.PK_TEMPLATE % guild_id, RewardEntry.SK_PREFIX
            )
        rewards = [RewardEntry.from_item(item) for item in items]
        rewards.sort(key=lambda entry: (entry.created_at, entry.entry_id))
        return rewards

    def delete_rewards(self, guild_id: int) -> int:
        rewards = self.list_rewards(guild_id)
        with _store_errors(f"delete rewards for guild {guild_id}"):
            for reward in rewards:
                self._table.delete_item(Key=RewardEntry.key(guild_id, reward.entry_id))
        return len(rewards)

    def replace_rewards(
        self, guild_id: int, descriptions: Iterable[str], *, created_at: int
    ) -> list[RewardEntry]:
        self.delete_rewards(guild_id)
        entries = [
            RewardEntry(
                guild_id=guild_id,
                entry_id=uuid.uuid4().hex,
                description=description,
                created_at=created_at + offset,
            )
            for offset, description in enumerate(descriptions)
        ]
        with _store_errors(f"save rewards for guild {guild_id}"):
            for entry in entries:
                self._table.put_item(Item=entry.to_item())
        return entries

    # ----- Claims -----
    def put_claim(self, claim: Claim) -> bool:
        """Insert a claim; ``False`` when the claim id is already taken."""
        self.ensure_table()
        with _store_errors(f"save claim {claim.claim_id}"):
            try:
                self._table.put_item(
                    Item=claim.to_item(),
                    ConditionExpression="attribute_not_exists(pk)",
                )
            except ClientError as exc:
                if _is_conditional_failure(exc):
                    return False
                raise
        return True

    def get_claim(self, guild_id: int, claim_id: str) -> Claim | None:
        self.ensure_table()
        with _store_errors(f"load claim {claim_id}"):
            resp = self._table.get_item(Key=Claim.key(guild_id, claim_id))
        item = resp.get("Item")
        if not item:
            return None
        return Claim.from_item(item)

    def list_claims(self, guild_id: int, user_id: int | None = None) -> list[Claim]:
        self.ensure_table()
        with _store_errors(f"load claims for guild {guild_id}"):
            items = self._query_prefix(Claim.PK_TEMPLATE % guild_id, Claim.SK_PREFIX)
        claims = [Claim.from_item(item) for item in items]
        if user_id is not None:
            claims = [claim for claim in claims if claim.user_id == user_id]
        return claims

    def mark_claim_used(self, guild_id: int, claim_id: str, *, used_at: int) -> bool:
        """Flip ``is_used``; ``False`` when the claim is missing or already used."""
        self.ensure_table()
        with _store_errors(f"redeem claim {claim_id}"):
            try:
                self._table.update_item(
                    Key=Claim.key(guild_id, claim_id),
                    UpdateExpression="SET is_used = :used, used_at = :now",
                    ConditionExpression="attribute_exists(pk) AND is_used = :unused",
                    ExpressionAttributeValues={
                        ":used": True,
                        ":unused": False,
                        ":now": used_at,
                    },
                )
            except ClientError as exc:
                if _is_conditional_failure(exc):
                    return False
                raise
        return True

    def delete_claims(self, guild_id: int) -> int:
        claims = self.list_claims(guild_id)
        with _store_errors(f"delete claims for guild {guild_id}"):
            for claim in claims:
                self._table.delete_item(Key=Claim.key(guild_id, claim.claim_id))
        return len(claims)

    # ----- Countdowns -----
    def save_countdown(self, entry: CountdownEntry) -> None:
        self.ensure_table()
        with _store_errors(f"save countdown {entry.message_id}"):
            self._table.put_item(Item=entry.to_item())

    def get_countdown(self, channel_id: int, message_id: int) -> CountdownEntry | None:
        self.ensure_table()
        with _store_errors(f"load countdown {message_id}"):
            resp = self._table.get_item(Key=CountdownEntry.key(channel_id, message_id))
        item = resp.get("Item")
        if not item:
            return None
        return CountdownEntry.from_item(item)

    def delete_countdown(self, channel_id: int, message_id: int) -> None:
        self.ensure_table()
        with _store_errors(f"delete countdown {message_id}"):
            self._table.delete_item(Key=CountdownEntry.key(channel_id, message_id))

    def list_channel_countdowns(self, channel_id: int) -> list[CountdownEntry]:
        self.ensure_table()
        with _store_errors(f"load countdowns for channel {channel_id}"):
            items = self._query_prefix(
                CountdownEntry.PK_TEMPLATE % channel_id, CountdownEntry.SK_PREFIX
            )
        return [CountdownEntry.from_item(item) for item in items]

    def list_countdowns(self) -> list[CountdownEntry]:
        self.ensure_table()
        with _store_errors("scan countdowns"):
            items = self._scan(Attr("sk").begins_with(CountdownEntry.SK_PREFIX))
        entries = [CountdownEntry.from_item(item) for item in items]
        entries.sort(key=lambda entry: entry.end_timestamp)
        return entries


__all__ = ["DropStorage"]
