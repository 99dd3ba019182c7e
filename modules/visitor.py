"""
Visitor identity resolution.
A visitor is known by a random UUID (cookie, overridable by a ?uuid= link)
and by the public IP address the search-credit ledger is keyed on.
"""

import time
import uuid
import random
import string
import ipaddress
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Mapping

import requests

from config import Config

logger = logging.getLogger(__name__)


@dataclass
class Visitor:
    """Everything the quota and premium checks can key on."""
    uuid: str
    ip: str
    email: Optional[str] = None


def _valid_uuid(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return str(uuid.UUID(value.strip()))
    except (ValueError, AttributeError):
        return None


def resolve_visitor_id(query_uuid: Optional[str], stored_uuid: Optional[str]) -> str:
    """
    Pick the visitor UUID for this request.

    A UUID in the URL (e.g. the return link from the donation page) wins and
    replaces whatever the browser had stored. Otherwise the stored cookie is
    reused, and a fresh UUID is minted when neither is usable.

    Args:
        query_uuid: Value of the ?uuid= query parameter, if any
        stored_uuid: Value of the visitor cookie, if any

    Returns:
        Canonical UUID string
    """
    from_url = _valid_uuid(query_uuid)
    if from_url:
        if from_url != _valid_uuid(stored_uuid):
            logger.info("UUID from URL detected, replacing stored visitor id")
        return from_url

    stored = _valid_uuid(stored_uuid)
    if stored:
        return stored

    new_id = str(uuid.uuid4())
    logger.info("New visitor id generated: %s", new_id)
    return new_id


def is_public_ip(ip: Optional[str]) -> bool:
    if not ip:
        return False
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (addr.is_private or addr.is_loopback or addr.is_link_local
                or addr.is_reserved or addr.is_unspecified)


def client_ip(headers: Mapping[str, str], peer: Optional[str]) -> Optional[str]:
    """
    Extract the client address from proxy headers or the socket peer.

    Args:
        headers: Request headers (case-insensitive mapping)
        peer: Address of the directly connected client

    Returns:
        Best-guess client IP, or None
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return peer


class PublicIPResolver:
    """
    Fetches this host's public IP from an echo service.

    Used when the request comes from a private or loopback address (local
    runs, same-LAN clients), where the peer address would lump everyone into
    one ledger row.
    """

    def __init__(self, echo_url: Optional[str] = None, ttl: Optional[int] = None,
                 session: Optional[requests.Session] = None):
        self.echo_url = echo_url or Config.IP_ECHO_URL
        self.ttl = Config.IP_CACHE_TTL if ttl is None else ttl
        self.session = session or requests.Session()
        self._cached_ip: Optional[str] = None
        self._cached_at: Optional[float] = None
        self._lock = threading.Lock()

    def _fresh(self) -> bool:
        return (self._cached_ip is not None and self._cached_at is not None
                and time.time() - self._cached_at < self.ttl)

    def get_ip(self) -> str:
        """
        Return the public IP, cached for the TTL.

        On failure falls back to a session identifier, kept for as long as
        nothing better is cached.
        """
        with self._lock:
            if self._fresh():
                return self._cached_ip

            try:
                response = self.session.get(self.echo_url, timeout=Config.REQUEST_TIMEOUT)
                response.raise_for_status()
                ip = response.json().get("ip")
                if not ip:
                    raise ValueError("Invalid IP format from echo service")

                self._cached_ip = ip
                self._cached_at = time.time()
                return ip

            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning("Fallback IP used (session-based): %s", e)
                if not self._cached_ip:
                    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=10))
                    self._cached_ip = f"session_{int(time.time() * 1000)}_{suffix}"
                    self._cached_at = time.time()
                return self._cached_ip


def resolve_visitor(
    headers: Mapping[str, str],
    peer: Optional[str],
    query_uuid: Optional[str],
    stored_uuid: Optional[str],
    email: Optional[str] = None,
    ip_resolver: Optional[PublicIPResolver] = None
) -> Visitor:
    """Build the Visitor for a request."""
    ip = client_ip(headers, peer)
    if not is_public_ip(ip) and ip_resolver is not None:
        ip = ip_resolver.get_ip()

    return Visitor(
        uuid=resolve_visitor_id(query_uuid, stored_uuid),
        ip=ip or "unknown",
        email=email.strip().lower() if email and email.strip() else None,
    )
