"""Salesforce org connections shared by the source and target clients."""

import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from simple_salesforce import Salesforce

from .models.migration import OrgCredentials

logger = logging.getLogger(__name__)

# Reads are safe to repeat; creates and updates are never retried
RETRYABLE_METHODS = frozenset(["GET", "HEAD", "OPTIONS"])


class TimeoutSession(requests.Session):
    """A requests session that applies a default timeout to every call."""

    def __init__(self, timeout: Optional[float] = None):
        super().__init__()
        self.timeout = timeout

    def request(self, method, url, **kwargs):
        if self.timeout is not None:
            kwargs.setdefault("timeout", self.timeout)
        return super().request(method, url, **kwargs)


def create_session(
    timeout: Optional[float] = 120.0,
    max_retries: int = 3,
    backoff_factor: float = 1.0
) -> requests.Session:
    """Create a requests session with per-call timeout and retry on idempotent reads."""
    session = TimeoutSession(timeout)

    retries = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=RETRYABLE_METHODS,
    )

    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    return session


def connect(
    credentials: OrgCredentials,
    timeout: Optional[float] = 120.0,
    api_version: str = "59.0"
) -> Salesforce:
    """
    Establish a connection to an org.

    Uses an existing session id when one is configured, otherwise logs in
    with username/password (with a security token or a connected app).
    """
    session = create_session(timeout=timeout)

    if credentials.session_id and credentials.instance_url:
        logger.info(f"Connecting to {credentials.instance_url} with an existing session")
        return Salesforce(
            instance_url=credentials.instance_url,
            session_id=credentials.session_id,
            session=session,
            version=api_version,
        )

    logger.info(f"Connecting to org as {credentials.username} (domain: {credentials.domain})")

    if credentials.consumer_key and credentials.consumer_secret:
        return Salesforce(
            username=credentials.username,
            password=credentials.password,
            consumer_key=credentials.consumer_key,
            consumer_secret=credentials.consumer_secret,
            domain=credentials.domain,
            session=session,
            version=api_version,
        )

    return Salesforce(
        username=credentials.username,
        password=credentials.password,
        security_token=credentials.security_token or "",
        domain=credentials.domain,
        session=session,
        version=api_version,
    )
