"""
Redis Stores
============
Production store implementations on ``redis.asyncio``.

Challenge verification, resend and counter increments run as Lua scripts so
each is a single atomic request no matter how many workers share the store.
Timestamps are kept as epoch milliseconds next to their ISO form so scripts
can compare them.
"""

import json
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..device.fingerprint import DeviceFingerprint
from ..device.models import Device
from ..errors import StorageError
from ..otp.hashing import hash_code
from ..otp.models import ChallengeStatus, OTPChallenge
from ..suppression.models import (
    BounceRecord,
    BounceType,
    ComplaintRecord,
    DenylistCheck,
    DenylistEntry,
    SuppressionSource,
)
from .base import CounterValue, DuplicateChallengeError

logger = structlog.get_logger(__name__)

KEY_PREFIX = "authkit"
DEFAULT_RETENTION_SECONDS = 86400  # keep terminal challenges a day for audit
INDEX_PAGE_SIZE = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def from_ms(value) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate Redis failures into StorageError."""
    try:
        yield
    except RedisError as e:
        logger.error("store_operation_failed", operation=operation, error=str(e))
        raise StorageError(str(e), operation=operation, cause=e) from e


def create_redis_client(url: str) -> Redis:
    """Create an async Redis client with string responses."""
    return Redis.from_url(url, decode_responses=True)


# Lua: create challenge only if the id is unused
CREATE_CHALLENGE_SCRIPT = """
local key = KEYS[1]
local index = KEYS[2]
if redis.call('EXISTS', key) == 1 then
    return 0
end
local created_at_ms = tonumber(ARGV[1])
local expire_at_ms = tonumber(ARGV[2])
local challenge_id = ARGV[3]
redis.call('HSET', key, unpack(ARGV, 4))
redis.call('PEXPIREAT', key, expire_at_ms)
redis.call('ZADD', index, created_at_ms, challenge_id)
redis.call('PEXPIREAT', index, expire_at_ms)
return 1
"""

# Lua: atomic verify-and-consume.
# Success only if pending, unexpired and hash matches; otherwise count a
# failed attempt (or mark expired) and fail at max_attempts.
VERIFY_AND_CONSUME_SCRIPT = """
local key = KEYS[1]
local provided_hash = ARGV[1]
local now_ms = tonumber(ARGV[2])
local now_iso = ARGV[3]

if redis.call('EXISTS', key) == 0 then
    return 0
end
if redis.call('HGET', key, 'status') ~= 'pending' then
    return 0
end
if now_ms >= tonumber(redis.call('HGET', key, 'expires_at_ms')) then
    redis.call('HSET', key, 'status', 'expired')
    return 0
end
if redis.call('HGET', key, 'code_hash') == provided_hash then
    redis.call('HSET', key, 'status', 'verified', 'verified_at', now_iso, 'last_attempt_at', now_iso)
    return 1
end

local attempts = redis.call('HINCRBY', key, 'attempts', 1)
redis.call('HSET', key, 'last_attempt_at', now_iso)
if attempts >= tonumber(redis.call('HGET', key, 'max_attempts')) then
    redis.call('HSET', key, 'status', 'failed')
end
return 0
"""

RESEND_SCRIPT = """
local key = KEYS[1]
local new_hash = ARGV[1]
local now_ms = tonumber(ARGV[2])

if redis.call('EXISTS', key) == 0 then
    return 0
end
if redis.call('HGET', key, 'status') ~= 'pending' then
    return 0
end
if now_ms >= tonumber(redis.call('HGET', key, 'expires_at_ms')) then
    return 0
end
local resends = tonumber(redis.call('HGET', key, 'resend_count') or '0')
if resends >= tonumber(redis.call('HGET', key, 'max_resends')) then
    return 0
end
redis.call('HSET', key, 'code_hash', new_hash, 'attempts', 0, 'resend_count', resends + 1)
return 1
"""

INCREMENT_SEND_COUNT_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
return redis.call('HINCRBY', KEYS[1], 'resend_count', 1)
"""

MARK_EXPIRED_SCRIPT = """
if redis.call('HGET', KEYS[1], 'status') == 'pending' then
    redis.call('HSET', KEYS[1], 'status', 'expired')
end
return 1
"""

# Lua: fixed-window counter. Window metadata is written only when the
# counter is absent or its window has ended.
COUNTER_INCREMENT_SCRIPT = """
local key = KEYS[1]
local window_ms = tonumber(ARGV[1])
local now_ms = tonumber(ARGV[2])

local expires_at = tonumber(redis.call('HGET', key, 'expires_at'))
if (not expires_at) or now_ms >= expires_at then
    expires_at = now_ms + window_ms
    redis.call('DEL', key)
    redis.call('HSET', key, 'count', 0, 'window_start', now_ms, 'expires_at', expires_at)
    redis.call('PEXPIREAT', key, expires_at)
end

local count = redis.call('HINCRBY', key, 'count', 1)
local window_start = tonumber(redis.call('HGET', key, 'window_start'))
return {count, window_start, expires_at}
"""


class RedisChallengeStore:
    def __init__(self, redis: Redis, retention_seconds: int = DEFAULT_RETENTION_SECONDS):
        self.redis = redis
        self.retention_seconds = retention_seconds
        self._create = redis.register_script(CREATE_CHALLENGE_SCRIPT)
        self._verify = redis.register_script(VERIFY_AND_CONSUME_SCRIPT)
        self._resend = redis.register_script(RESEND_SCRIPT)
        self._increment_send = redis.register_script(INCREMENT_SEND_COUNT_SCRIPT)
        self._mark_expired = redis.register_script(MARK_EXPIRED_SCRIPT)

    def _key(self, challenge_id: str) -> str:
        return f"{KEY_PREFIX}:challenge:{challenge_id}"

    def _index_key(self, identifier_hash: str) -> str:
        return f"{KEY_PREFIX}:challenges:by_identifier:{identifier_hash}"

    async def create(self, challenge: OTPChallenge) -> None:
        fields = {k: v for k, v in challenge.to_dict().items() if v is not None}
        fields["created_at_ms"] = to_ms(challenge.created_at)
        fields["expires_at_ms"] = to_ms(challenge.expires_at)
        expire_at_ms = to_ms(challenge.expires_at + timedelta(seconds=self.retention_seconds))

        args = [to_ms(challenge.created_at), expire_at_ms, challenge.id]
        for name, value in fields.items():
            args.extend([name, value])

        with storage_errors("challenge.create"):
            created = await self._create(
                keys=[self._key(challenge.id), self._index_key(challenge.identifier_hash)],
                args=args,
            )
        if not created:
            raise DuplicateChallengeError(f"Challenge {challenge.id} already exists")

    async def get_by_id(self, challenge_id: str) -> Optional[OTPChallenge]:
        with storage_errors("challenge.get_by_id"):
            data = await self.redis.hgetall(self._key(challenge_id))
        if not data:
            return None
        return OTPChallenge.from_dict(data)

    async def get_active_by_identifier(
        self, identifier_hash: str, now: Optional[datetime] = None
    ) -> Optional[OTPChallenge]:
        now = now or utcnow()
        index_key = self._index_key(identifier_hash)

        with storage_errors("challenge.get_active_by_identifier"):
            # Newest first; ids that can never be active again leave the index
            start = 0
            while True:
                challenge_ids = await self.redis.zrevrange(index_key, start, start + INDEX_PAGE_SIZE - 1)
                if not challenge_ids:
                    return None

                active = None
                stale = []
                for challenge_id in challenge_ids:
                    data = await self.redis.hgetall(self._key(challenge_id))
                    if not data:
                        stale.append(challenge_id)
                        continue
                    challenge = OTPChallenge.from_dict(data)
                    if challenge.status == ChallengeStatus.PENDING and not challenge.is_expired(now):
                        active = challenge
                        break
                    stale.append(challenge_id)

                if stale:
                    await self.redis.zrem(index_key, *stale)
                if active is not None:
                    return active
                start += INDEX_PAGE_SIZE - len(stale)

    async def verify_and_consume(
        self, challenge_id: str, code: str, now: Optional[datetime] = None
    ) -> bool:
        now = now or utcnow()
        key = self._key(challenge_id)

        with storage_errors("challenge.verify_and_consume"):
            # Salt never changes after creation, so reading it first is safe
            salt = await self.redis.hget(key, "salt")
            if salt is None:
                return False
            result = await self._verify(
                keys=[key],
                args=[hash_code(code, salt), to_ms(now), now.isoformat()],
            )
        return int(result) == 1

    async def resend(
        self, challenge_id: str, new_code: str, now: Optional[datetime] = None
    ) -> bool:
        now = now or utcnow()
        key = self._key(challenge_id)

        with storage_errors("challenge.resend"):
            salt = await self.redis.hget(key, "salt")
            if salt is None:
                return False
            result = await self._resend(keys=[key], args=[hash_code(new_code, salt), to_ms(now)])
        return int(result) == 1

    async def increment_send_count(self, challenge_id: str) -> int:
        with storage_errors("challenge.increment_send_count"):
            result = await self._increment_send(keys=[self._key(challenge_id)])
        return int(result)

    async def mark_expired(self, challenge_id: str) -> None:
        with storage_errors("challenge.mark_expired"):
            await self._mark_expired(keys=[self._key(challenge_id)])

    async def delete_by_id(self, challenge_id: str) -> None:
        with storage_errors("challenge.delete_by_id"):
            await self.redis.delete(self._key(challenge_id))


class RedisCounterStore:
    def __init__(self, redis: Redis):
        self.redis = redis
        self._increment = redis.register_script(COUNTER_INCREMENT_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{KEY_PREFIX}:counter:{key}"

    async def increment(
        self, key: str, window_seconds: int, now: Optional[datetime] = None
    ) -> CounterValue:
        now = now or utcnow()
        with storage_errors("counter.increment"):
            count, window_start, expires_at = await self._increment(
                keys=[self._key(key)],
                args=[window_seconds * 1000, to_ms(now)],
            )
        return CounterValue(
            key=key,
            count=int(count),
            window_start=from_ms(window_start),
            expires_at=from_ms(expires_at),
        )

    async def get(self, key: str, now: Optional[datetime] = None) -> Optional[CounterValue]:
        with storage_errors("counter.get"):
            data = await self.redis.hgetall(self._key(key))
        if not data:
            return None
        expires_at = from_ms(data["expires_at"])
        if (now or utcnow()) >= expires_at:
            return None
        return CounterValue(
            key=key,
            count=int(data["count"]),
            window_start=from_ms(data["window_start"]),
            expires_at=expires_at,
        )

    async def reset(self, key: str) -> None:
        with storage_errors("counter.reset"):
            await self.redis.delete(self._key(key))


class RedisDeviceStore:
    def __init__(self, redis: Redis):
        self.redis = redis

    def _key(self, user_id: str, device_id: str) -> str:
        return f"{KEY_PREFIX}:device:{user_id}:{device_id}"

    def _user_key(self, user_id: str) -> str:
        return f"{KEY_PREFIX}:devices:{user_id}"

    def _fingerprint_key(self, user_id: str) -> str:
        return f"{KEY_PREFIX}:devices:fingerprints:{user_id}"

    @staticmethod
    def _to_fields(device: Device) -> Dict[str, str]:
        fields = {
            "id": device.id,
            "user_id": device.user_id,
            "fingerprint": json.dumps(device.fingerprint.to_dict()),
            "trusted": "1" if device.trusted else "0",
            "last_seen_at": device.last_seen_at.isoformat(),
            "created_at": device.created_at.isoformat(),
        }
        if device.push_token:
            fields["push_token"] = device.push_token
        if device.revoked_at:
            fields["revoked_at"] = device.revoked_at.isoformat()
        return fields

    @staticmethod
    def _from_fields(data: Dict[str, str]) -> Device:
        revoked_at = data.get("revoked_at")
        return Device(
            id=data["id"],
            user_id=data["user_id"],
            fingerprint=DeviceFingerprint.from_dict(json.loads(data["fingerprint"])),
            trusted=data.get("trusted") == "1",
            last_seen_at=datetime.fromisoformat(data["last_seen_at"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            push_token=data.get("push_token"),
            revoked_at=datetime.fromisoformat(revoked_at) if revoked_at else None,
        )

    async def upsert(self, device: Device) -> None:
        key = self._key(device.user_id, device.id)
        with storage_errors("device.upsert"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping=self._to_fields(device))
                pipe.sadd(self._user_key(device.user_id), device.id)
                pipe.hset(self._fingerprint_key(device.user_id), device.fingerprint.hash, device.id)
                await pipe.execute()

    async def get_by_user_and_device_id(self, user_id: str, device_id: str) -> Optional[Device]:
        with storage_errors("device.get"):
            data = await self.redis.hgetall(self._key(user_id, device_id))
        return self._from_fields(data) if data else None

    async def get_by_fingerprint(self, user_id: str, fingerprint_hash: str) -> Optional[Device]:
        with storage_errors("device.get_by_fingerprint"):
            device_id = await self.redis.hget(self._fingerprint_key(user_id), fingerprint_hash)
        if device_id is None:
            return None
        return await self.get_by_user_and_device_id(user_id, device_id)

    async def list_by_user(self, user_id: str) -> List[Device]:
        devices = []
        with storage_errors("device.list_by_user"):
            device_ids = await self.redis.smembers(self._user_key(user_id))
            for device_id in sorted(device_ids):
                data = await self.redis.hgetall(self._key(user_id, device_id))
                if data:
                    devices.append(self._from_fields(data))
        return devices

    async def revoke(self, user_id: str, device_id: str, now: Optional[datetime] = None) -> bool:
        key = self._key(user_id, device_id)
        revoked_at = (now or utcnow()).isoformat()
        with storage_errors("device.revoke"):
            if not await self.redis.exists(key):
                return False
            await self.redis.hset(key, mapping={"trusted": "0", "revoked_at": revoked_at})
        return True

    async def trust(self, user_id: str, device_id: str) -> bool:
        key = self._key(user_id, device_id)
        with storage_errors("device.trust"):
            if not await self.redis.exists(key):
                return False
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hset(key, "trusted", "1")
                pipe.hdel(key, "revoked_at")
                await pipe.execute()
        return True

    async def delete(self, user_id: str, device_id: str) -> None:
        device = await self.get_by_user_and_device_id(user_id, device_id)
        with storage_errors("device.delete"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._key(user_id, device_id))
                pipe.srem(self._user_key(user_id), device_id)
                if device is not None:
                    pipe.hdel(self._fingerprint_key(user_id), device.fingerprint.hash)
                await pipe.execute()


class RedisDenylistStore:
    def __init__(self, redis: Redis):
        self.redis = redis

    def _key(self, identifier_hash: str) -> str:
        return f"{KEY_PREFIX}:denylist:{identifier_hash}"

    @property
    def _index_key(self) -> str:
        return f"{KEY_PREFIX}:denylist:index"

    async def add(
        self, identifier_hash: str, reason: str, expires_at: Optional[datetime] = None
    ) -> None:
        now = utcnow()
        key = self._key(identifier_hash)
        fields = {"reason": reason, "created_at": now.isoformat()}
        if expires_at is not None:
            fields["expires_at"] = expires_at.isoformat()

        with storage_errors("denylist.add"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping=fields)
                if expires_at is not None:
                    pipe.pexpireat(key, to_ms(expires_at))
                pipe.zadd(self._index_key, {identifier_hash: to_ms(now)})
                await pipe.execute()

    async def remove(self, identifier_hash: str) -> None:
        with storage_errors("denylist.remove"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._key(identifier_hash))
                pipe.zrem(self._index_key, identifier_hash)
                await pipe.execute()

    async def _get_entry(self, identifier_hash: str) -> Optional[DenylistEntry]:
        data = await self.redis.hgetall(self._key(identifier_hash))
        if not data:
            return None
        expires_at = data.get("expires_at")
        return DenylistEntry(
            identifier_hash=identifier_hash,
            reason=data.get("reason", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )

    async def is_blocked(self, identifier_hash: str, now: Optional[datetime] = None) -> DenylistCheck:
        with storage_errors("denylist.is_blocked"):
            entry = await self._get_entry(identifier_hash)
            if entry is None:
                return DenylistCheck(blocked=False)
            if entry.is_expired(now):
                await self.remove(identifier_hash)
                return DenylistCheck(blocked=False)
        return DenylistCheck(blocked=True, reason=entry.reason, source=SuppressionSource.DENYLIST)

    async def list(self, limit: int = 100) -> List[DenylistEntry]:
        entries = []
        with storage_errors("denylist.list"):
            hashes = await self.redis.zrevrange(self._index_key, 0, max(limit - 1, 0))
            for identifier_hash in hashes:
                entry = await self._get_entry(identifier_hash)
                if entry is not None and not entry.is_expired():
                    entries.append(entry)
        return entries


class RedisBounceStore:
    def __init__(self, redis: Redis):
        self.redis = redis

    def _bounce_index(self, identifier_hash: str, bounce_type: BounceType) -> str:
        return f"{KEY_PREFIX}:bounces:{identifier_hash}:{bounce_type.value}"

    def _bounce_records(self, identifier_hash: str) -> str:
        return f"{KEY_PREFIX}:bounce_records:{identifier_hash}"

    def _complaint_index(self, identifier_hash: str) -> str:
        return f"{KEY_PREFIX}:complaints:{identifier_hash}"

    def _complaint_records(self, identifier_hash: str) -> str:
        return f"{KEY_PREFIX}:complaint_records:{identifier_hash}"

    async def record_bounce(self, record: BounceRecord) -> bool:
        index = self._bounce_index(record.identifier_hash, record.bounce_type)
        with storage_errors("bounce.record_bounce"):
            added = await self.redis.zadd(index, {record.event_key: to_ms(record.timestamp)}, nx=True)
            if not added:
                return False
            await self.redis.hset(
                self._bounce_records(record.identifier_hash),
                f"{record.bounce_type.value}:{record.event_key}",
                json.dumps(record.to_dict()),
            )
        return True

    async def record_complaint(self, record: ComplaintRecord) -> bool:
        index = self._complaint_index(record.identifier_hash)
        with storage_errors("bounce.record_complaint"):
            added = await self.redis.zadd(index, {record.event_key: to_ms(record.timestamp)}, nx=True)
            if not added:
                return False
            await self.redis.hset(
                self._complaint_records(record.identifier_hash),
                record.event_key,
                json.dumps(record.to_dict()),
            )
        return True

    async def get_bounce_count(
        self, identifier_hash: str, bounce_type: Optional[BounceType] = None
    ) -> int:
        types = [bounce_type] if bounce_type else list(BounceType)
        total = 0
        with storage_errors("bounce.get_bounce_count"):
            for kind in types:
                total += await self.redis.zcard(self._bounce_index(identifier_hash, kind))
        return total

    async def get_complaint_count(self, identifier_hash: str) -> int:
        with storage_errors("bounce.get_complaint_count"):
            return await self.redis.zcard(self._complaint_index(identifier_hash))

    async def get_last_bounce(self, identifier_hash: str) -> Optional[BounceRecord]:
        latest = None
        with storage_errors("bounce.get_last_bounce"):
            for kind in BounceType:
                newest = await self.redis.zrevrange(
                    self._bounce_index(identifier_hash, kind), 0, 0, withscores=True
                )
                if newest and (latest is None or newest[0][1] > latest[2]):
                    latest = (kind, newest[0][0], newest[0][1])
            if latest is None:
                return None
            raw = await self.redis.hget(
                self._bounce_records(identifier_hash), f"{latest[0].value}:{latest[1]}"
            )
        return BounceRecord.from_dict(json.loads(raw)) if raw else None

    async def get_last_complaint(self, identifier_hash: str) -> Optional[ComplaintRecord]:
        with storage_errors("bounce.get_last_complaint"):
            newest = await self.redis.zrevrange(self._complaint_index(identifier_hash), 0, 0)
            if not newest:
                return None
            raw = await self.redis.hget(self._complaint_records(identifier_hash), newest[0])
        return ComplaintRecord.from_dict(json.loads(raw)) if raw else None


class RedisRedeemedTokenStore:
    """Redeemed token ids, each kept until its token would have expired."""

    def __init__(self, redis: Redis):
        self.redis = redis

    def _key(self, token_id: str) -> str:
        return f"{KEY_PREFIX}:redeemed:{token_id}"

    async def mark_redeemed(
        self, token_id: str, expires_at: datetime, now: Optional[datetime] = None
    ) -> bool:
        # Keep at least a second so an already-expired token still conflicts
        ttl_ms = max(to_ms(expires_at) - to_ms(now or utcnow()), 1000)
        with storage_errors("token.mark_redeemed"):
            created = await self.redis.set(self._key(token_id), "1", nx=True, px=ttl_ms)
        return bool(created)

    async def is_redeemed(self, token_id: str) -> bool:
        with storage_errors("token.is_redeemed"):
            return bool(await self.redis.exists(self._key(token_id)))
