"""Authorization gate for MCP Server.

Evaluates a capability's declared ``AuthorizationRequirement`` against
the caller's verified identity. Authorization is enforced here, right
before the handler runs, never by the handler itself.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from shared.errors import ForbiddenError, UnauthorizedError
from shared.logging import get_logger
from shared.models import AccessToken, AuthorizationRequirement

logger = get_logger(__name__)

MFA_CLAIM = "amr"
MFA_INDICATORS = frozenset({"mfa"})
ROLE_CLAIMS = ("roles", "role")

PolicyPredicate = Callable[[AccessToken], Union[bool, Awaitable[bool]]]


class PolicyEvaluator(ABC):
    """Collaborator deciding named policies. Pass or fail only."""

    @abstractmethod
    async def evaluate(self, policy: str, identity: AccessToken) -> bool:
        pass


class PolicyRegistry(PolicyEvaluator):
    """Named policy predicates. Unknown policies deny."""

    def __init__(self) -> None:
        self._policies: dict[str, PolicyPredicate] = {}

    def add(self, name: str, predicate: PolicyPredicate) -> None:
        self._policies[name.lower()] = predicate

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._policies

    async def evaluate(self, policy: str, identity: AccessToken) -> bool:
        predicate = self._policies.get(policy.lower())
        if predicate is None:
            logger.warning("Unknown authorization policy", policy=policy)
            return False

        outcome = predicate(identity)
        if asyncio.iscoroutine(outcome):
            outcome = await outcome
        return bool(outcome)


class Decision(str, Enum):
    ALLOW = "allow"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


def has_mfa(identity: AccessToken) -> bool:
    """True if the ``amr`` claim records a multi-factor login."""
    return any(
        str(value).lower() in MFA_INDICATORS
        for value in identity.claim_values(MFA_CLAIM)
    )


def identity_roles(identity: AccessToken) -> set[str]:
    roles: set[str] = set()
    for claim in ROLE_CLAIMS:
        roles.update(str(value).lower() for value in identity.claim_values(claim))
    return roles


class AuthorizationGate:
    """
    Pure predicate over (requirement, identity).

    Every facet the requirement declares must pass: scheme membership,
    role membership, the named policy and multi-factor evidence.
    """

    def __init__(self, policies: Optional[PolicyEvaluator] = None) -> None:
        self.policies = policies or PolicyRegistry()

    async def evaluate(
        self,
        requirement: Optional[AuthorizationRequirement],
        identity: Optional[AccessToken]
    ) -> tuple[Decision, Optional[str]]:
        """
        Decide whether ``identity`` satisfies ``requirement``.

        Returns:
            Tuple of (decision, reason for denial)
        """
        if requirement is None:
            return Decision.ALLOW, None

        if identity is None:
            logger.warning("Access denied (no identity)")
            return Decision.UNAUTHORIZED, "Authentication required"

        if identity.is_expired:
            logger.warning("Access denied (token expired)", client_id=identity.client_id)
            return Decision.UNAUTHORIZED, "Token expired"

        if requirement.schemes:
            wanted = {s.lower() for s in requirement.schemes}
            if (identity.scheme or "").lower() not in wanted:
                logger.warning(
                    "Access denied (scheme mismatch)",
                    subject=identity.subject,
                    scheme=identity.scheme,
                    required_schemes=requirement.schemes
                )
                return Decision.FORBIDDEN, f"Required schemes: {', '.join(requirement.schemes)}"

        if requirement.roles:
            if not identity_roles(identity) & {r.lower() for r in requirement.roles}:
                logger.warning(
                    "Access denied (role mismatch)",
                    subject=identity.subject,
                    required_roles=requirement.roles
                )
                return Decision.FORBIDDEN, f"Required roles: {', '.join(requirement.roles)}"

        if requirement.policy:
            if not await self.policies.evaluate(requirement.policy, identity):
                logger.warning(
                    "Access denied (policy)",
                    subject=identity.subject,
                    policy=requirement.policy
                )
                return Decision.FORBIDDEN, f"Policy '{requirement.policy}' not satisfied"

        if requirement.require_mfa and not has_mfa(identity):
            logger.warning("Access denied (MFA required)", subject=identity.subject)
            return Decision.FORBIDDEN, "Multi-factor authentication required"

        logger.debug("Access granted", subject=identity.subject)
        return Decision.ALLOW, None

    async def check(
        self,
        requirement: Optional[AuthorizationRequirement],
        identity: Optional[AccessToken]
    ) -> None:
        """
        Raise unless ``identity`` satisfies ``requirement``.

        Raises:
            UnauthorizedError: No (valid) identity
            ForbiddenError: Identity fails a facet
        """
        decision, reason = await self.evaluate(requirement, identity)
        if decision == Decision.UNAUTHORIZED:
            raise UnauthorizedError(reason)
        if decision == Decision.FORBIDDEN:
            raise ForbiddenError(reason)
