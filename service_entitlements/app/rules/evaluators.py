"""
Rule evaluation functions.

Each rule type maps to one async function taking the rule and the shared
:class:`EvaluationContext`. On-chain reads go through the result cache.
An :class:`RPCError` never escapes :func:`evaluate_rule`: the rule is
reported as not allowed with the error attached.
"""

from typing import Awaitable, Callable, Dict

from shared.addresses import ZERO_ADDRESS
from shared.errors import RPCError
from shared.logging import get_logger
from ..chain.abi import BALANCE_OF, OWNER_OF, decode_address, decode_uint256
from .models import (
    AllowlistRule, ERC20MinBalanceRule, ERC721OwnerRule, EvaluationContext, HasScopeRule, Rule, RuleOutcome,
    RuleType,
)

logger = get_logger("entitlements.evaluators")


def _chain_for(rule, context: EvaluationContext) -> int:
    return rule.chain_id if rule.chain_id is not None else context.chain_id


async def _balance_of(context: EvaluationContext, chain_id: int, token_address: str, holder: str) -> int:
    async def fetch() -> int:
        data = await context.chain_client.call(chain_id, token_address, BALANCE_OF, [("address", holder)])
        return decode_uint256(data)

    key = context.cache.make_key("balance", chain_id, token_address, holder)
    return await context.cache.get_or_compute(key, fetch)


async def evaluate_erc20_min_balance(rule: ERC20MinBalanceRule, context: EvaluationContext) -> RuleOutcome:
    balance = await _balance_of(context, _chain_for(rule, context), rule.token_address, context.subject)
    return RuleOutcome(
        rule_type=rule.rule_type,
        allowed=balance >= rule.min_balance,
        detail=f"balance {balance}, required {rule.min_balance}",
    )


async def evaluate_erc721_owner(rule: ERC721OwnerRule, context: EvaluationContext) -> RuleOutcome:
    chain_id = _chain_for(rule, context)

    if rule.token_id is None:
        balance = await _balance_of(context, chain_id, rule.token_address, context.subject)
        return RuleOutcome(rule_type=rule.rule_type, allowed=balance > 0, detail=f"holds {balance} tokens")

    async def fetch_owner() -> str:
        data = await context.chain_client.call(chain_id, rule.token_address, OWNER_OF,
                                               [("uint256", rule.token_id)])
        return decode_address(data)

    # Owner is cached per token, not per subject
    key = context.cache.make_key("owner", chain_id, rule.token_address, rule.token_id)
    owner = await context.cache.get_or_compute(key, fetch_owner)

    if owner == ZERO_ADDRESS:
        return RuleOutcome(rule_type=rule.rule_type, allowed=False, detail=f"token {rule.token_id} is burned")
    return RuleOutcome(
        rule_type=rule.rule_type,
        allowed=owner == context.subject,
        detail=f"token {rule.token_id} owner {owner}",
    )


async def evaluate_allowlist(rule: AllowlistRule, context: EvaluationContext) -> RuleOutcome:
    if not context.allowlists.has_allowlist(rule.allowlist_id):
        logger.warning("Unknown allowlist", allowlist_id=rule.allowlist_id)
        return RuleOutcome(rule_type=rule.rule_type, allowed=False,
                           detail=f"allowlist {rule.allowlist_id} not found")
    allowed = await context.allowlists.contains(rule.allowlist_id, context.subject)
    return RuleOutcome(rule_type=rule.rule_type, allowed=allowed)


async def evaluate_has_scope(rule: HasScopeRule, context: EvaluationContext) -> RuleOutcome:
    return RuleOutcome(rule_type=rule.rule_type, allowed=rule.scope in context.scopes)


EVALUATORS: Dict[RuleType, Callable[..., Awaitable[RuleOutcome]]] = {
    RuleType.ERC20_MIN_BALANCE: evaluate_erc20_min_balance,
    RuleType.ERC721_OWNER: evaluate_erc721_owner,
    RuleType.ALLOWLIST: evaluate_allowlist,
    RuleType.HAS_SCOPE: evaluate_has_scope,
}


async def evaluate_rule(rule: Rule, context: EvaluationContext) -> RuleOutcome:
    """Evaluate one rule, converting chain failures into a denied outcome."""
    evaluator = EVALUATORS.get(rule.rule_type)
    if evaluator is None:
        return RuleOutcome(rule_type=rule.rule_type, allowed=False, detail="unsupported rule type")

    try:
        return await evaluator(rule, context)
    except RPCError as e:
        reason = str(e.details.get("reason", e.message))
        logger.warning(
            "Rule evaluation failed closed",
            rule_type=rule.rule_type.value,
            subject=context.subject,
            reason=reason,
        )
        return RuleOutcome(rule_type=rule.rule_type, allowed=False, error=reason)
