"""
Farcaster identity resolution.

Maps a player's FID to a verified wallet address through the Neynar bulk user
endpoint. Lookups never raise: anything that goes wrong resolves to None so a
single bad identity can only exclude that winner from a payout.
"""

import asyncio
import re
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

import aiohttp
import structlog
from solders.pubkey import Pubkey

from kissmint.core.config import settings

logger = structlog.get_logger(__name__)

ETH_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_address(address: Any, address_type: str) -> bool:
    """Check that an address is well formed for its chain."""
    if not isinstance(address, str) or not address:
        return False
    if address_type == "eth":
        return bool(ETH_ADDRESS_PATTERN.match(address))
    try:
        Pubkey.from_string(address)
        return True
    except ValueError:
        return False


class FarcasterIdentityResolver:
    """Resolves FIDs to payable addresses with a bounded TTL cache."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        address_type: Optional[str] = None,
        cache_ttl: Optional[int] = None,
        max_entries: Optional[int] = None,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.api_key = api_key if api_key is not None else settings.neynar_api_key
        self.base_url = (base_url or settings.neynar_base_url).rstrip("/")
        self.address_type = address_type or settings.identity_address_type
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.identity_cache_ttl_seconds
        self.max_entries = max_entries if max_entries is not None else settings.identity_cache_max_entries
        self.timeout = timeout if timeout is not None else settings.identity_request_timeout

        self._session = session
        self._owns_session = session is None
        # fid -> (expires_at, address or None), oldest first
        self._cache: "OrderedDict[str, Tuple[float, Optional[str]]]" = OrderedDict()

        self.logger = logger.bind(service="identity_resolver", address_type=self.address_type)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this resolver created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _cache_get(self, fid: str) -> Tuple[bool, Optional[str]]:
        entry = self._cache.get(fid)
        if entry is None:
            return False, None
        expires_at, address = entry
        if time.monotonic() >= expires_at:
            del self._cache[fid]
            return False, None
        self._cache.move_to_end(fid)
        return True, address

    def _cache_set(self, fid: str, address: Optional[str]) -> None:
        self._cache[fid] = (time.monotonic() + self.cache_ttl, address)
        self._cache.move_to_end(fid)
        while len(self._cache) > self.max_entries:
            self._cache.popitem(last=False)

    def clear_cache(self) -> None:
        self._cache.clear()

    def _extract_address(self, payload: Dict[str, Any]) -> Optional[str]:
        """First verified address of the configured type, if any."""
        users = payload.get("users") or []
        if not isinstance(users, list) or not users or not isinstance(users[0], dict):
            return None
        verified = users[0].get("verified_addresses") or {}
        if not isinstance(verified, dict):
            return None
        for address in verified.get(f"{self.address_type}_addresses") or []:
            if is_valid_address(address, self.address_type):
                return address
        return None

    async def _fetch_verified_addresses(self, fid: str) -> Optional[Dict[str, Any]]:
        session = await self._get_session()
        headers = {"accept": "application/json", "x-api-key": self.api_key or ""}
        async with session.get(
            f"{self.base_url}/user/bulk",
            params={"fids": fid},
            headers=headers
        ) as response:
            if response.status != 200:
                body = await response.text()
                self.logger.warning(
                    "Neynar lookup returned an error status",
                    fid=fid,
                    status=response.status,
                    body=body[:200]
                )
                return None
            return await response.json()

    async def resolve_wallet_address(self, user_id: str) -> Optional[str]:
        """Verified address for a FID, or None when it cannot be resolved."""
        fid = str(user_id).strip() if user_id is not None else ""
        if not fid:
            self.logger.error("Cannot resolve empty FID")
            return None

        hit, cached = self._cache_get(fid)
        if hit:
            return cached

        if not self.api_key:
            self.logger.warning("Neynar API key not configured", fid=fid)
            return None

        try:
            payload = await self._fetch_verified_addresses(fid)
            address = self._extract_address(payload) if payload else None
        except asyncio.TimeoutError:
            self.logger.warning("Neynar lookup timed out", fid=fid)
            address = None
        except (aiohttp.ClientError, ValueError, AttributeError, TypeError) as e:
            self.logger.warning("Neynar lookup failed", fid=fid, error=str(e))
            address = None
        except Exception as e:
            self.logger.error("Unexpected Neynar lookup error", fid=fid, error=repr(e))
            address = None

        if address is None:
            self.logger.warning("No verified wallet address found", fid=fid)

        self._cache_set(fid, address)
        return address
