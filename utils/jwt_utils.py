"""JWT utilities for session tokens and signed media URLs"""

import jwt
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from config import settings


class JWTManager:
    """Handles JWT token creation and verification"""

    def __init__(self, session_secret: str, media_secret: str):
        self.session_secret = session_secret
        self.media_secret = media_secret
        self.algorithm = "HS256"
        self.issuer = "course-portal"

    def create_session_token(self, user_id: str, expires_hours: int = 24) -> Dict:
        """
        Create a session token after successful sign-in

        Args:
            user_id: The identity the session belongs to
            expires_hours: Session token expiry in hours (default: 24)

        Returns:
            Dict containing the token, its jti and expiry
        """
        now = datetime.now(timezone.utc)
        jti = str(uuid.uuid4())

        payload = {
            "sub": user_id,
            "jti": jti,
            "iat": now,
            "exp": now + timedelta(hours=expires_hours),
            "aud": "session",
            "iss": self.issuer,
        }

        token = jwt.encode(payload, self.session_secret, algorithm=self.algorithm)
        return {"token": token, "jti": jti, "expires_at": payload["exp"]}

    def verify_session_token(self, token: str) -> Optional[Dict]:
        """
        Verify a session token

        Returns:
            Decoded payload if valid, None if invalid or expired
        """
        try:
            return jwt.decode(
                token, self.session_secret, algorithms=[self.algorithm], audience="session", issuer=self.issuer
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    def create_media_token(self, bucket: str, path: str, expires_seconds: int) -> Dict:
        """Create a short-lived token granting read access to one stored object"""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": f"{bucket}/{path}",
            "iat": now,
            "exp": now + timedelta(seconds=expires_seconds),
            "aud": "media",
            "iss": self.issuer,
        }
        token = jwt.encode(payload, self.media_secret, algorithm=self.algorithm)
        return {"token": token, "expires_at": payload["exp"]}

    def verify_media_token(self, token: str, bucket: str, path: str) -> bool:
        """Check that a media token is unexpired and was issued for this object"""
        try:
            payload = jwt.decode(
                token, self.media_secret, algorithms=[self.algorithm], audience="media", issuer=self.issuer
            )
        except jwt.InvalidTokenError:
            return False
        return payload.get("sub") == f"{bucket}/{path}"


# Global instance
jwt_manager = JWTManager(settings.SESSION_SECRET, settings.STORAGE_SIGNING_SECRET)
