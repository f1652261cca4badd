"""
Time-limited access URLs for stored audio files.

Finalists and round-1 voters only ever receive URLs from here, never raw
storage references.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import quote, urlencode, urlparse

from jose import JWTError, jwt
from pydantic import BaseModel

from mixwarz.config import get_settings
from mixwarz.kernel.clock import Clock, SystemClock

PASSTHROUGH_PREFIXES = ("/uploads/",)

FILE_TOKEN_TYPE = "file"


class FileAccessPayload(BaseModel):
    """Claims carried by a file access token."""

    sub: str  # Storage path
    exp: datetime
    iat: datetime
    jti: str
    type: str = FILE_TOKEN_TYPE


class FileUrlService(ABC):
    """Resolves a stored file reference to a URL a listener can fetch."""

    @abstractmethod
    def get_access_url(self, reference: str) -> str:
        """Return an accessible URL for the reference."""


class SignedUrlService(FileUrlService):
    """
    URLs carrying a signed, expiring access token for one storage path.

    References that are already absolute http(s) URLs, or relative
    `/uploads/` paths served by the web tier, are returned unchanged.
    Issue and expiry times both come from the injected clock.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        secret: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        algorithm: str = "HS256",
        clock: Optional[Clock] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.file_base_url).rstrip("/")
        self.secret = secret or settings.file_url_secret
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.file_url_ttl_seconds
        self.algorithm = algorithm
        self.clock = clock or SystemClock()

    def get_access_url(self, reference: str) -> str:
        if not reference:
            return reference
        if reference.startswith(PASSTHROUGH_PREFIXES):
            return reference
        if urlparse(reference).scheme in ("http", "https"):
            return reference

        path = reference.lstrip("/")
        query = urlencode({"token": self.create_token(path)})
        return f"{self.base_url}/{quote(path)}?{query}"

    def create_token(self, path: str, expires_delta: Optional[timedelta] = None) -> str:
        """Sign an access token for one storage path."""
        now = self.clock.now()
        expire = now + (expires_delta if expires_delta is not None else timedelta(seconds=self.ttl_seconds))
        payload = {
            "sub": path.lstrip("/"),
            "exp": expire,
            "iat": now,
            "jti": str(uuid.uuid4()),
            "type": FILE_TOKEN_TYPE,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[FileAccessPayload]:
        """Decode a token; None if it is invalid, expired or not a file token."""
        try:
            # Expiry is checked against the injected clock below
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            return None
        if payload.get("type") != FILE_TOKEN_TYPE:
            return None
        claims = FileAccessPayload(**payload)
        if claims.exp <= self.clock.now():
            return None
        return claims

    def verify(self, path: str, token: str) -> bool:
        """Check that the token is valid and grants access to this path."""
        payload = self.verify_token(token)
        return payload is not None and payload.sub == path.lstrip("/")
