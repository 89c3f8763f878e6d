# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: magic submission tokens.

A token is an HS256 JWT scoped to one (instance, member) pair. Its validity
is re-derived on every use from the current instance row, so closing an
instance revokes every outstanding link. ``validate`` never says *why* a
token failed; the reason is only logged.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from app.core.clock import Clock, utcnow
from app.core.config import settings
from app.core.errors import AuthError
from app.core.logging import get_logger
from app.metrics.prometheus import TOKENS_ISSUED, TOKEN_VALIDATIONS
from app.models.domain import COLLECTING, MagicTokenClaims, MagicTokenInfo
from app.repositories.answer_repository import AnswerRepository
from app.repositories.instance_repository import InstanceRepository
from app.repositories.team_repository import TeamRepository

logger = get_logger(__name__)

ALGORITHM = "HS256"
TOKEN_SCOPE = "standup:respond"
REQUIRED_CLAIMS = ["instance_id", "member_id", "platform_user_id", "org_id", "iat", "exp"]


class MagicTokenService:
    def __init__(
        self,
        instance_repo: InstanceRepository,
        team_repo: TeamRepository,
        answer_repo: AnswerRepository,
        secret: str = settings.MAGIC_TOKEN_SECRET,
        app_url: str = settings.APP_URL,
        default_ttl_hours: int = settings.MAGIC_TOKEN_TTL_HOURS,
        clock: Clock = utcnow,
    ):
        self._instances = instance_repo
        self._teams = team_repo
        self._answers = answer_repo
        self._secret = secret
        self._app_url = app_url.rstrip("/")
        self._default_ttl = default_ttl_hours
        self._clock = clock

    def issue(self, instance_id: str, member_id: str, platform_user_id: str,
              org_id: str, ttl_hours: Optional[int] = None) -> MagicTokenInfo:
        if not self._secret:
            raise RuntimeError("MAGIC_TOKEN_SECRET is not configured")
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + timedelta(hours=ttl_hours or self._default_ttl)
        token = jwt.encode(
            {
                "instance_id": instance_id,
                "member_id": member_id,
                "platform_user_id": platform_user_id,
                "org_id": org_id,
                "scope": TOKEN_SCOPE,
                "iat": int(issued_at.timestamp()),
                "exp": int(expires_at.timestamp()),
            },
            self._secret,
            algorithm=ALGORITHM,
        )
        TOKENS_ISSUED.inc()
        logger.info("Magic token issued instance=%s member=%s expires=%s",
                    instance_id, member_id, expires_at.isoformat())
        return MagicTokenInfo(
            token=token,
            expires_at=expires_at,
            submission_url=f"{self._app_url}/standup/respond/{token}",
        )

    def validate(self, token: str) -> Optional[MagicTokenClaims]:
        """Decoded claims if the token may submit right now, else None."""
        try:
            claims, reason = self._check(token)
        except Exception:
            logger.exception("Magic token validation errored")
            claims, reason = None, "error"
        TOKEN_VALIDATIONS.labels(result="valid" if claims else reason).inc()
        if claims is None:
            logger.info("Magic token rejected reason=%s", reason)
        return claims

    def _check(self, token: str):
        if not self._secret or not token:
            return None, "malformed"
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "require": REQUIRED_CLAIMS},
            )
        except jwt.PyJWTError:
            return None, "signature"
        if payload.get("scope") != TOKEN_SCOPE:
            return None, "scope"

        claims = MagicTokenClaims(
            standup_instance_id=payload["instance_id"],
            team_member_id=payload["member_id"],
            platform_user_id=payload["platform_user_id"],
            org_id=payload["org_id"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
        now = self._clock()
        if now >= claims.expires_at:
            return None, "expired"

        instance = self._instances.get_for_org(claims.standup_instance_id, claims.org_id)
        if instance is None:
            return None, "instance_not_found"
        if (instance.participant(claims.team_member_id) is None
                or not self._teams.is_active_member(claims.team_member_id, instance.team_id)):
            return None, "member_inactive"
        if instance.state != COLLECTING:
            return None, "not_collecting"
        if now >= instance.deadline:
            return None, "window_closed"
        return claims, "valid"

    def has_existing_responses(self, instance_id: str, member_id: str) -> bool:
        return self._answers.has_any(instance_id, member_id)

    def get_standup_info(self, claims: MagicTokenClaims) -> Dict[str, Any]:
        """Instance, team, member and question metadata for the submission page."""
        instance = self._instances.get_for_org(claims.standup_instance_id, claims.org_id)
        if instance is None:
            raise AuthError("Invalid or expired link")
        team = self._teams.get_team(instance.team_id) or {}
        member = self._teams.get_member(claims.team_member_id)
        return {
            "instance": {
                "id": instance.id,
                "target_date": instance.target_date.isoformat(),
                "created_at": instance.created_at.isoformat(),
                "state": instance.state,
                "timeout_at": instance.deadline.isoformat(),
            },
            "team": {"id": instance.team_id, "name": team.get("name", "")},
            "member": {
                "id": claims.team_member_id,
                "name": member.name if member else "",
                "platform_user_id": claims.platform_user_id,
            },
            "questions": list(instance.snapshot.questions),
            "has_existing_responses": self.has_existing_responses(
                instance.id, claims.team_member_id
            ),
        }
