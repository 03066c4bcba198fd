"""Tenant command policy enforcement.

Every active policy of the tenant is evaluated against the classified
intent label and a normalized excerpt of the user's text. Precedence is
forbid > confirm > auto: one forbid match blocks the request no matter
what else matched.

A failure to read the policies is an infrastructure error, not a policy
decision. RouterSettings.fail_open_policy chooses between allowing the
request (the default) and rejecting it.
"""

import fnmatch
import logging
import re
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import RouterSettings
from src.db.models import Agent, CommandPolicy, MatchType, PolicyMode
from src.errors import RouterError
from src.orchestrator.intent_classifier import normalize_text

logger = logging.getLogger(__name__)

POLICY_UNAVAILABLE_MESSAGE = (
    "Command policies could not be checked right now. Please try again later."
)


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of evaluating a request against tenant policies.

    Attributes:
        blocked: A forbid policy matched, or lookup failed closed.
        reason: Machine-readable reason ("forbidden", "confirm",
            "policy_unavailable", "fail_open", "allowed").
        message: User-facing text when blocked or awaiting confirmation.
        requires_confirmation: A confirm policy matched and must be approved.
        policy: The deciding policy, if any.
        matched: Names of every policy that matched.
    """

    blocked: bool
    reason: str
    message: str | None = None
    requires_confirmation: bool = False
    policy: CommandPolicy | None = None
    matched: list[str] = field(default_factory=list)

    @property
    def policy_name(self) -> str | None:
        return self.policy.policy_name if self.policy else None


def policy_matches(policy: CommandPolicy, candidates: list[str]) -> bool:
    """Check a policy's match rule against any candidate string.

    exact compares case-insensitively, regex searches case-insensitively,
    and wildcard matches the whole candidate with ``*`` and ``?``.
    A regex that doesn't compile never matches.
    """
    value = policy.match_value or ""
    match_type = policy.match_type

    if match_type == MatchType.exact.value:
        target = value.strip().lower()
        return any(c.lower() == target for c in candidates)

    if match_type == MatchType.regex.value:
        try:
            pattern = re.compile(value, re.IGNORECASE)
        except re.error as e:
            logger.warning(
                "Policy %r has an invalid regex %r: %s", policy.policy_name, value, e
            )
            return False
        return any(pattern.search(c) for c in candidates)

    if match_type == MatchType.wildcard.value:
        # fnmatch's [...] classes aren't part of the policy syntax
        escaped = value.lower().replace("[", "[[]")
        return any(fnmatch.fnmatchcase(c.lower(), escaped) for c in candidates)

    logger.warning(
        "Policy %r has unknown match_type %r", policy.policy_name, match_type
    )
    return False


def os_allowed(policy: CommandPolicy, agent_os: str | None) -> bool:
    """True if the policy applies to the agent's OS.

    An empty whitelist applies everywhere. Otherwise the agent OS must
    contain one of the whitelisted labels (so "ubuntu" covers
    "Ubuntu 22.04"). A whitelisted policy never applies to an agent whose
    OS is unknown.
    """
    whitelist = policy.os_whitelist
    if not whitelist:
        return True
    if not agent_os:
        return False
    os_lower = agent_os.lower()
    return any(entry.lower() in os_lower for entry in whitelist)


class PolicyGate:
    """Evaluates tenant command policies for one request.

    Attributes:
        db: SQLAlchemy session for database operations.
        settings: Router behaviour switches (fail-open, confirm mode).
    """

    def __init__(self, db: Session, settings: RouterSettings) -> None:
        self.db = db
        self.settings = settings

    def _load_policies(self, tenant_id: str) -> list[CommandPolicy]:
        return (
            self.db.query(CommandPolicy)
            .filter(
                CommandPolicy.customer_id == tenant_id,
                CommandPolicy.active.is_(True),
            )
            .order_by(CommandPolicy.created_at, CommandPolicy.id)
            .all()
        )

    def check_policy(
        self,
        tenant_id: str,
        intent: str,
        raw_text: str,
        agent_id: str | None = None,
    ) -> PolicyDecision:
        """Decide whether a classified request may proceed.

        Args:
            tenant_id: Tenant whose policies apply.
            intent: Classified intent label.
            raw_text: Original user message.
            agent_id: Target agent, used for OS-whitelisted policies.

        Returns:
            PolicyDecision. blocked=True means the pipeline must stop.
        """
        try:
            policies = self._load_policies(tenant_id)
            agent_os = None
            if agent_id and any(p.os_whitelist for p in policies):
                agent = self.db.get(Agent, agent_id)
                agent_os = agent.os if agent else None
        except SQLAlchemyError as e:
            self.db.rollback()
            if self.settings.fail_open_policy:
                logger.warning(
                    "Policy lookup failed for tenant %s, allowing (fail open): %s",
                    tenant_id,
                    e,
                )
                return PolicyDecision(blocked=False, reason="fail_open")
            logger.error(
                "Policy lookup failed for tenant %s, blocking (fail closed): %s",
                tenant_id,
                e,
            )
            return PolicyDecision(
                blocked=True,
                reason="policy_unavailable",
                message=POLICY_UNAVAILABLE_MESSAGE,
            )

        excerpt = normalize_text(raw_text)[: self.settings.policy_text_excerpt]
        candidates = [intent, excerpt]

        matched = [
            p for p in policies
            if os_allowed(p, agent_os) and policy_matches(p, candidates)
        ]
        names = [p.policy_name for p in matched]

        forbid = next((p for p in matched if p.mode == PolicyMode.forbid.value), None)
        if forbid is not None:
            logger.info(
                "Policy %r forbids intent %s for tenant %s",
                forbid.policy_name,
                intent,
                tenant_id,
            )
            return PolicyDecision(
                blocked=True,
                reason="forbidden",
                message=f"This action is not allowed: {forbid.policy_name}",
                policy=forbid,
                matched=names,
            )

        confirm = next((p for p in matched if p.mode == PolicyMode.confirm.value), None)
        if confirm is not None:
            if self.settings.confirm_policy_mode == "auto_approve":
                logger.warning(
                    "Policy %r requires confirmation; auto-approving intent %s",
                    confirm.policy_name,
                    intent,
                )
                return PolicyDecision(
                    blocked=False, reason="allowed", policy=confirm, matched=names
                )
            message = confirm.confirm_message or (
                f'Command requires confirmation under policy "{confirm.policy_name}".'
            )
            return PolicyDecision(
                blocked=False,
                reason="confirm",
                message=message,
                requires_confirmation=True,
                policy=confirm,
                matched=names,
            )

        return PolicyDecision(blocked=False, reason="allowed", matched=names)


def create_policy(
    db: Session,
    tenant_id: str,
    policy_name: str,
    mode: PolicyMode | str,
    match_type: MatchType | str,
    match_value: str,
    os_whitelist: list[str] | None = None,
    confirm_message: str | None = None,
    risk: str = "low",
    timeout_sec: int | None = None,
) -> CommandPolicy:
    """Add an active policy for a tenant.

    Raises:
        RouterError: E-2001 if a regex match value does not compile.
        ValueError: If mode or match_type is unknown.
    """
    mode = PolicyMode(mode)
    match_type = MatchType(match_type)
    if match_type == MatchType.regex:
        try:
            re.compile(match_value)
        except re.error as e:
            raise RouterError.from_code(
                "E-2001",
                policy_name=policy_name,
                match_type=match_type.value,
                error=str(e),
            ) from e

    policy = CommandPolicy(
        customer_id=tenant_id,
        policy_name=policy_name,
        mode=mode.value,
        match_type=match_type.value,
        match_value=match_value,
        confirm_message=confirm_message,
        risk=risk,
        timeout_sec=timeout_sec,
        active=True,
    )
    policy.os_whitelist = os_whitelist or []
    db.add(policy)
    db.commit()
    db.refresh(policy)
    logger.info(
        "Created %s policy %r (%s %r) for tenant %s",
        mode.value,
        policy_name,
        match_type.value,
        match_value,
        tenant_id,
    )
    return policy
