"""
ActionTokenService -- single-use decision tokens for email links.

Responsibility:
    Issue, inspect and atomically consume the secrets embedded in the
    "approve" / "refuse" links sent to validators, and expire them early
    when the step they were issued for moves on.

Architecture position:
    Kernel > Services -- imperative shell.  Called by WorkflowOrchestrator
    (early expiry) and by ApprovalCircuitService (issuance, peek, resolve).

Invariants enforced:
    - Only SHA-256 digests are stored; raw secrets exist only in links.
    - A token binds (step, activation, validator email, decision) and is
      consumed at most once: ``resolve`` is a single conditional UPDATE
      guarded by ``used_at IS NULL AND expires_at > now`` and by the step
      still being in the activation the token was issued for.  Two
      concurrent resolutions of the same token cannot both see rowcount 1.
    - A token issued for an earlier activation never resolves successfully
      once the step has been reactivated.

Failure modes:
    - Resolution failures are values (``TokenResolution``), never
      exceptions.
    - StepNotFoundError when issuing for an unknown step.
"""

import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.tokens import (
    StepTokens,
    TokenContext,
    TokenResolution,
    TokenStatus,
)
from approval_kernel.domain.workflow import Decision, normalize_email
from approval_kernel.exceptions import StepNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.token import ActionTokenModel
from approval_kernel.models.workflow import StepInstanceModel
from approval_kernel.utils.hashing import hash_token

logger = get_logger("services.token")

DEFAULT_TOKEN_TTL_HOURS = 48

# Expired-on-purpose marker, earlier than any real issuance time
EXPIRED_SENTINEL = datetime(1970, 1, 1, tzinfo=timezone.utc)

_TOKEN_BYTES = 32


class ActionTokenService:
    """
    Issues and consumes action tokens.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT record decisions; a successful ``resolve`` only returns
          the bound context for the caller to feed into the orchestrator.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ttl_hours: int = DEFAULT_TOKEN_TTL_HOURS,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._ttl = timedelta(hours=ttl_hours)

    def _load_step(self, step_id: UUID) -> StepInstanceModel:
        step = self._session.get(StepInstanceModel, step_id)
        if step is None:
            raise StepNotFoundError(str(step_id))
        return step

    def _new_token(
        self,
        step: StepInstanceModel,
        validator_email: str,
        decision: Decision,
        now: datetime,
    ) -> str:
        raw = secrets.token_hex(_TOKEN_BYTES)
        self._session.add(
            ActionTokenModel(
                token_hash=hash_token(raw),
                step_id=step.id,
                workflow_id=step.workflow_id,
                activation=step.activation,
                validator_email=validator_email,
                decision=decision.value,
                created_at=now,
                expires_at=now + self._ttl,
            )
        )
        return raw

    def issue(self, step_id: UUID, validator_email: str, decision: Decision) -> str:
        """
        Issue one token for (step, validator, decision).

        Returns:
            The raw secret; only its digest is persisted.
        """
        step = self._load_step(step_id)
        raw = self._new_token(
            step, normalize_email(validator_email), Decision(decision), self._clock.now(),
        )
        self._session.flush()
        return raw

    def issue_for_step(
        self,
        step_id: UUID,
        emails: list[str] | tuple[str, ...],
    ) -> dict[str, StepTokens]:
        """Issue an approve/refuse pair for each email, bound to the current activation."""
        step = self._load_step(step_id)
        now = self._clock.now()
        issued: dict[str, StepTokens] = {}
        for email in emails:
            normalized = normalize_email(email)
            issued[normalized] = StepTokens(
                approve_token=self._new_token(step, normalized, Decision.APPROVE, now),
                refuse_token=self._new_token(step, normalized, Decision.REFUSE, now),
            )
        self._session.flush()
        logger.info(
            "action_tokens_issued",
            extra={
                "step_id": str(step_id),
                "activation": step.activation,
                "validator_count": len(issued),
            },
        )
        return issued

    def _lookup(self, raw_token: str) -> ActionTokenModel | None:
        return self._session.execute(
            select(ActionTokenModel)
            .where(ActionTokenModel.token_hash == hash_token(raw_token))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _current_activation(self, step_id: UUID) -> int | None:
        return self._session.execute(
            select(StepInstanceModel.activation).where(StepInstanceModel.id == step_id)
        ).scalar_one_or_none()

    def _classify(self, token: ActionTokenModel | None, now: datetime) -> TokenResolution:
        if token is None:
            return TokenResolution.failed(TokenStatus.NOT_FOUND)
        context = TokenContext(
            step_id=token.step_id,
            workflow_id=token.workflow_id,
            validator_email=token.validator_email,
            decision=Decision(token.decision),
            activation=token.activation,
        )
        if token.used_at is not None:
            return TokenResolution(TokenStatus.ALREADY_USED, context)
        if token.expires_at <= now:
            return TokenResolution(TokenStatus.EXPIRED, context)
        if token.activation != self._current_activation(token.step_id):
            return TokenResolution(TokenStatus.EXPIRED, context)
        return TokenResolution(TokenStatus.OK, context)

    def peek(self, raw_token: str) -> TokenResolution:
        """Classify a token without consuming it (decision preview page)."""
        return self._classify(self._lookup(raw_token), self._clock.now())

    def resolve(self, raw_token: str) -> TokenResolution:
        """
        Consume a token.

        The UPDATE is the whole check: it matches only an unused, unexpired
        token whose step is still in the token's activation.  When it
        matches nothing, the token is re-read to say why.
        """
        now = self._clock.now()
        digest = hash_token(raw_token)
        current_activation = (
            select(StepInstanceModel.activation)
            .where(StepInstanceModel.id == ActionTokenModel.step_id)
            .scalar_subquery()
        )
        result = self._session.execute(
            update(ActionTokenModel)
            .where(
                ActionTokenModel.token_hash == digest,
                ActionTokenModel.used_at.is_(None),
                ActionTokenModel.expires_at > now,
                ActionTokenModel.activation == current_activation,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )

        token = self._lookup(raw_token)
        if result.rowcount != 1:
            resolution = self._classify(token, now)
            logger.info(
                "token_rejected",
                extra={"reason": resolution.status.value},
            )
            return resolution

        resolution = TokenResolution(
            TokenStatus.OK,
            TokenContext(
                step_id=token.step_id,
                workflow_id=token.workflow_id,
                validator_email=token.validator_email,
                decision=Decision(token.decision),
                activation=token.activation,
            ),
        )
        logger.info(
            "token_resolved",
            extra={
                "step_id": str(token.step_id),
                "decision": token.decision,
                "activation": token.activation,
            },
        )
        return resolution

    def expire_for_steps(self, step_ids: list[UUID] | tuple[UUID, ...]) -> int:
        """Expire every unused token of the given steps. Returns the count."""
        if not step_ids:
            return 0
        result = self._session.execute(
            update(ActionTokenModel)
            .where(
                ActionTokenModel.step_id.in_(list(step_ids)),
                ActionTokenModel.used_at.is_(None),
                ActionTokenModel.expires_at > EXPIRED_SENTINEL,
            )
            .values(expires_at=EXPIRED_SENTINEL)
            .execution_options(synchronize_session=False)
        )
        expired = result.rowcount or 0
        if expired:
            logger.info(
                "action_tokens_expired",
                extra={"step_count": len(step_ids), "token_count": expired},
            )
        return expired
