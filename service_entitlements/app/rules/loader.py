"""
Policy document loading.

Documents look like::

    {
      "policies": [
        {
          "name": "holders",
          "combination": "ALL",
          "rules": [
            {"type": "erc20_min_balance", "chainId": 1,
             "tokenAddress": "0x...", "minBalance": "1000000000000000000"},
            {"type": "erc721_owner", "tokenAddress": "0x...", "tokenId": 7},
            {"type": "allowlist", "allowlistId": "vip"},
            {"type": "has_scope", "scope": "premium"}
          ]
        }
      ]
    }

Snake-case keys (``token_address``, ``min_balance``...) are accepted too.
Amounts may be JSON integers or decimal strings so that 256-bit values
survive JSON tooling.
"""

import json
from typing import Any, Dict, List, Optional

from shared.addresses import InvalidAddressError
from shared.errors import PolicyConfigError
from .models import (
    AllowlistRule, Combination, ERC20MinBalanceRule, ERC721OwnerRule, HasScopeRule, Policy, Rule, RuleType,
)


def _field(raw: Dict[str, Any], *names: str, required: bool = True) -> Any:
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    if required:
        raise ValueError(f"missing field {names[0]}")
    return None


def _integer(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().isdigit():
        result = int(value.strip())
    else:
        raise ValueError(f"{name} must be a non-negative integer or decimal string")
    if result < 0:
        raise ValueError(f"{name} must be non-negative")
    return result


def _optional_integer(raw: Dict[str, Any], *names: str) -> Optional[int]:
    value = _field(raw, *names, required=False)
    return None if value is None else _integer(value, names[0])


def _string(raw: Dict[str, Any], *names: str) -> str:
    value = _field(raw, *names)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{names[0]} must be a non-empty string")
    return value.strip()


def parse_rule(raw: Dict[str, Any]) -> Rule:
    if not isinstance(raw, dict):
        raise ValueError("rule must be an object")
    try:
        rule_type = RuleType(raw.get("type"))
    except ValueError:
        raise ValueError(f"unknown rule type {raw.get('type')!r}")

    if rule_type == RuleType.ERC20_MIN_BALANCE:
        return ERC20MinBalanceRule(
            token_address=_string(raw, "tokenAddress", "token_address", "contract_address"),
            min_balance=_integer(_field(raw, "minBalance", "min_balance", "minimum_balance"), "minBalance"),
            chain_id=_optional_integer(raw, "chainId", "chain_id"),
        )
    if rule_type == RuleType.ERC721_OWNER:
        return ERC721OwnerRule(
            token_address=_string(raw, "tokenAddress", "token_address", "contract_address"),
            token_id=_optional_integer(raw, "tokenId", "token_id"),
            chain_id=_optional_integer(raw, "chainId", "chain_id"),
        )
    if rule_type == RuleType.ALLOWLIST:
        return AllowlistRule(allowlist_id=_string(raw, "allowlistId", "allowlist_id"))
    return HasScopeRule(scope=_string(raw, "scope"))


def parse_policy(raw: Dict[str, Any], index: int) -> Policy:
    if not isinstance(raw, dict):
        raise PolicyConfigError(f"policy #{index} must be an object")
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise PolicyConfigError(f"policy #{index} has no name")

    try:
        combination = Combination(str(raw.get("combination", "ALL")).upper())
    except ValueError:
        raise PolicyConfigError(f"policy {name}: combination must be ALL or ANY")

    raw_rules = raw.get("rules")
    if not isinstance(raw_rules, list) or not raw_rules:
        raise PolicyConfigError(f"policy {name}: rules must be a non-empty list")

    rules: List[Rule] = []
    for rule_index, raw_rule in enumerate(raw_rules):
        try:
            rules.append(parse_rule(raw_rule))
        except (ValueError, InvalidAddressError) as e:
            raise PolicyConfigError(f"policy {name} rule #{rule_index}: {e}",
                                    details={"policy": name, "rule": rule_index})

    return Policy(name=name.strip(), rules=tuple(rules), combination=combination)


def load_policies(document: Any) -> List[Policy]:
    """Parse a policy document into :class:`Policy` objects."""
    if isinstance(document, dict):
        raw_policies = document.get("policies")
    else:
        raw_policies = document
    if not isinstance(raw_policies, list):
        raise PolicyConfigError("policy document must contain a 'policies' list")

    policies = [parse_policy(raw, index) for index, raw in enumerate(raw_policies)]
    names = [policy.name for policy in policies]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise PolicyConfigError(f"duplicate policy names: {', '.join(duplicates)}")
    return policies


def load_policies_file(path: str) -> List[Policy]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PolicyConfigError(f"cannot read policy file {path}: {e}")
    return load_policies(document)
