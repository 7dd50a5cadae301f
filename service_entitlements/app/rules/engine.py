"""
Policy evaluation engine for Entitlements Service.
"""

import asyncio
import time
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from shared.addresses import InvalidAddressError, normalize_address
from shared.errors import AccessDenied, InvalidAddress, PolicyNotFound, RPCError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .evaluators import evaluate_rule
from .models import Combination, EvaluationContext, Policy, PolicyDecision, RuleOutcome


class PolicyManager:
    """Holds the policy table and evaluates policies by name.

    The table is an immutable mapping replaced wholesale on reload, so an
    evaluation always sees one consistent snapshot. Rules of a policy run
    concurrently; once the decision is settled by a clean outcome the
    remaining rules are cancelled. If every rule failed to read the chain
    the evaluation raises :class:`RPCError` instead of returning a decision.
    """

    def __init__(self,
                 chain_client,
                 cache,
                 allowlists,
                 policies: Iterable[Policy] = (),
                 metrics: Optional[MetricsCollector] = None,
                 short_circuit: bool = True):
        self.chain_client = chain_client
        self.cache = cache
        self.allowlists = allowlists
        self.metrics = metrics
        self.short_circuit = short_circuit
        self.logger = get_logger("entitlements.policies")
        self._policies: Mapping[str, Policy] = MappingProxyType({})
        self._evaluations = 0
        self._grants = 0
        self.load(policies)

    def load(self, policies: Iterable[Policy]) -> int:
        """Replace the policy table. Returns the number of policies loaded."""
        table: Dict[str, Policy] = {}
        for policy in policies:
            if policy.name in table:
                raise ValueError(f"duplicate policy name: {policy.name}")
            table[policy.name] = policy
        self._policies = MappingProxyType(table)
        self.logger.info("Policies loaded", count=len(table), names=sorted(table))
        return len(table)

    reload = load

    def get_policy(self, name: str) -> Policy:
        policy = self._policies.get(name)
        if policy is None:
            raise PolicyNotFound(name)
        return policy

    def policy_names(self) -> List[str]:
        return sorted(self._policies)

    async def evaluate(self, policy_name: str, subject: str, chain_id: int, scopes: Sequence[str] = ()) -> bool:
        decision = await self.evaluate_detailed(policy_name, subject, chain_id, scopes)
        return decision.granted

    async def require(self, policy_name: str, subject: str, chain_id: int, scopes: Sequence[str] = ()) -> PolicyDecision:
        """Evaluate and raise :class:`AccessDenied` unless granted."""
        decision = await self.evaluate_detailed(policy_name, subject, chain_id, scopes)
        if not decision.granted:
            raise AccessDenied(details={"policy": policy_name, "subject": decision.subject})
        return decision

    async def evaluate_detailed(self,
                                policy_name: str,
                                subject: str,
                                chain_id: int,
                                scopes: Sequence[str] = ()) -> PolicyDecision:
        policy = self.get_policy(policy_name)
        try:
            subject = normalize_address(subject)
        except InvalidAddressError:
            raise InvalidAddress(details={"policy": policy_name, "subject": subject})

        context = EvaluationContext(
            subject=subject,
            chain_id=chain_id,
            chain_client=self.chain_client,
            cache=self.cache,
            allowlists=self.allowlists,
            scopes=tuple(scopes),
        )

        start = time.perf_counter()
        outcomes = await self._run_rules(policy, context)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 3)

        if len(outcomes) == len(policy.rules) and all(outcome.error for outcome in outcomes):
            self._record(policy.name, "unavailable", elapsed_ms)
            self.logger.error("Policy evaluation unavailable", policy=policy.name, subject=subject,
                              errors=[outcome.error for outcome in outcomes])
            raise RPCError(details={"policy": policy.name, "reason": "all rules failed"})

        granted = self._combine(policy.combination, outcomes)
        self._evaluations += 1
        if granted:
            self._grants += 1
        self._record(policy.name, "grant" if granted else "deny", elapsed_ms)
        self.logger.info(
            "Policy evaluated",
            policy=policy.name,
            subject=subject,
            granted=granted,
            rules_evaluated=len(outcomes),
            evaluation_time_ms=elapsed_ms,
        )
        return PolicyDecision(
            policy=policy.name,
            subject=subject,
            granted=granted,
            outcomes=tuple(outcomes),
            evaluation_time_ms=elapsed_ms,
        )

    async def _run_rules(self, policy: Policy, context: EvaluationContext) -> List[RuleOutcome]:
        tasks = [asyncio.create_task(evaluate_rule(rule, context)) for rule in policy.rules]
        position = {task: index for index, task in enumerate(tasks)}
        outcomes: Dict[int, RuleOutcome] = {}
        pending = set(tasks)

        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    outcomes[position[task]] = task.result()
                if self.short_circuit and self._settled(policy.combination, outcomes.values()):
                    break
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        return [outcomes[index] for index in sorted(outcomes)]

    @staticmethod
    def _settled(combination: Combination, outcomes: Iterable[RuleOutcome]) -> bool:
        # Errored outcomes never settle a decision early
        for outcome in outcomes:
            if outcome.error:
                continue
            if combination == Combination.ALL and not outcome.allowed:
                return True
            if combination == Combination.ANY and outcome.allowed:
                return True
        return False

    @staticmethod
    def _combine(combination: Combination, outcomes: Sequence[RuleOutcome]) -> bool:
        if combination == Combination.ANY:
            return any(outcome.allowed for outcome in outcomes)
        return bool(outcomes) and all(outcome.allowed for outcome in outcomes)

    def _record(self, policy: str, decision: str, elapsed_ms: float):
        if self.metrics is None:
            return
        self.metrics.increment_counter("policy_decisions_total", policy=policy, decision=decision)
        self.metrics.observe_histogram("policy_evaluation_duration_seconds", elapsed_ms / 1000, policy=policy)

    def stats(self) -> Dict[str, int]:
        return {
            "policies": len(self._policies),
            "evaluations": self._evaluations,
            "grants": self._grants,
        }
