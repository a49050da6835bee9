"""
IPBlocklist — in-memory registry of auto-blocked source IPs.

Advisory bookkeeping only: entries are recorded with timestamps and
reasons, and can be listed or removed, but no request handling path
consults the list. Whitelisted addresses are never blocked.

AutoBlockEvaluator decides when a source IP has produced enough
high-severity security events to be added to the list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from events.event_models import SecurityEvent

logger = logging.getLogger(__name__)


@dataclass
class BlockEntry:
    """A single IP block record."""

    ip: str
    blocked_at: datetime
    reason: str
    event_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "blocked_at": self.blocked_at.isoformat(),
            "reason": self.reason,
            "event_count": self.event_count,
        }


class IPBlocklist:
    """In-memory block set with whitelist and audit log.

    Usage::

        blocklist = IPBlocklist()
        blocklist.block("203.0.113.10", reason="auto_block", event_count=5)
        assert blocklist.is_blocked("203.0.113.10")
        blocklist.unblock("203.0.113.10")
    """

    def __init__(self, whitelist: Iterable[str] = ("127.0.0.1", "::1")) -> None:
        self._blocked: dict[str, BlockEntry] = {}
        self._whitelist: set[str] = set(whitelist)
        self._audit_log: list[dict[str, Any]] = []
        self._total_blocks = 0
        self._total_unblocks = 0

    # ── Block / Unblock ─────────────────────────────────────────────────

    def block(self, ip: str, *, reason: str, event_count: int = 0) -> bool:
        """Block an IP address. Returns False if whitelisted or already blocked."""
        if ip in self._whitelist:
            logger.info("IPBlocklist: %s is whitelisted, not blocking", ip)
            self._log_action("block_denied", ip, reason="whitelisted")
            return False

        if ip in self._blocked:
            logger.debug("IPBlocklist: %s already blocked", ip)
            return False

        self._blocked[ip] = BlockEntry(
            ip=ip,
            blocked_at=datetime.now(timezone.utc),
            reason=reason,
            event_count=event_count,
        )
        self._total_blocks += 1
        self._log_action("blocked", ip, reason=reason, event_count=event_count)
        logger.warning(
            "IPBlocklist: BLOCKED %s due to %d high-severity events (%s)",
            ip,
            event_count,
            reason,
        )
        return True

    def unblock(self, ip: str) -> bool:
        """Remove an IP from the block list. Returns False if not blocked."""
        if ip not in self._blocked:
            return False

        del self._blocked[ip]
        self._total_unblocks += 1
        self._log_action("unblocked", ip, reason="manual")
        logger.info("IPBlocklist: UNBLOCKED %s (manual)", ip)
        return True

    # ── Query ───────────────────────────────────────────────────────────

    def is_blocked(self, ip: str) -> bool:
        return ip in self._blocked

    def blocked_ips(self) -> list[BlockEntry]:
        return list(self._blocked.values())

    def __len__(self) -> int:
        return len(self._blocked)

    # ── Whitelist ───────────────────────────────────────────────────────

    def add_whitelist(self, ip: str) -> None:
        """Add an IP to the whitelist, lifting any current block."""
        self._whitelist.add(ip)
        if ip in self._blocked:
            del self._blocked[ip]
            self._total_unblocks += 1
            self._log_action("unblocked", ip, reason="added_to_whitelist")

    def is_whitelisted(self, ip: str) -> bool:
        return ip in self._whitelist

    # ── Audit & Stats ───────────────────────────────────────────────────

    def get_audit_log(self) -> list[dict[str, Any]]:
        return list(self._audit_log)

    def get_stats(self) -> dict[str, Any]:
        return {
            "currently_blocked": len(self._blocked),
            "total_blocks": self._total_blocks,
            "total_unblocks": self._total_unblocks,
            "whitelist_size": len(self._whitelist),
            "audit_log_size": len(self._audit_log),
        }

    def _log_action(self, action: str, ip: str, **kwargs: Any) -> None:
        self._audit_log.append({
            "action": action,
            "ip": ip,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **kwargs,
        })


class AutoBlockEvaluator:
    """Blocks an IP once it produces enough high/critical events.

    Evaluated on every critical event: events from the same source IP
    within the last ``window_ms`` whose severity is high or critical are
    counted, and the IP is blocked when the count reaches ``threshold``.
    """

    def __init__(
        self,
        blocklist: IPBlocklist,
        *,
        window_ms: float = 60 * 60 * 1000,
        threshold: int = 5,
    ) -> None:
        self._blocklist = blocklist
        self._window_ms = window_ms
        self._threshold = threshold
        self._evaluations = 0

    def evaluate(
        self, ip: str, events: Iterable[SecurityEvent], now_ms: float
    ) -> bool:
        """Return True if this evaluation newly blocked ``ip``."""
        self._evaluations += 1
        if self._blocklist.is_blocked(ip):
            return False

        count = sum(
            1
            for e in events
            if e.ip == ip
            and now_ms - e.timestamp < self._window_ms
            and e.is_high_or_critical
        )
        if count < self._threshold:
            return False

        return self._blocklist.block(ip, reason="auto_block_high_severity", event_count=count)

    def get_stats(self) -> dict[str, Any]:
        return {
            "evaluations": self._evaluations,
            "window_ms": self._window_ms,
            "threshold": self._threshold,
        }
