"""
Rule data models for Entitlements Service.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from shared.addresses import normalize_address


class RuleType(str, Enum):
    """Rule types."""
    ERC20_MIN_BALANCE = "erc20_min_balance"
    ERC721_OWNER = "erc721_owner"
    ALLOWLIST = "allowlist"
    HAS_SCOPE = "has_scope"


class Combination(str, Enum):
    """How rule outcomes combine into a decision."""
    ALL = "ALL"
    ANY = "ANY"


@dataclass(frozen=True)
class ERC20MinBalanceRule:
    """Holder must own at least ``min_balance`` base units of an ERC20 token."""
    token_address: str
    min_balance: int
    chain_id: Optional[int] = None
    rule_type: ClassVar[RuleType] = RuleType.ERC20_MIN_BALANCE

    def __post_init__(self):
        object.__setattr__(self, "token_address", normalize_address(self.token_address))
        if self.min_balance < 0:
            raise ValueError("min_balance must be non-negative")


@dataclass(frozen=True)
class ERC721OwnerRule:
    """Holder must own ``token_id``, or any token of the collection when unset."""
    token_address: str
    token_id: Optional[int] = None
    chain_id: Optional[int] = None
    rule_type: ClassVar[RuleType] = RuleType.ERC721_OWNER

    def __post_init__(self):
        object.__setattr__(self, "token_address", normalize_address(self.token_address))
        if self.token_id is not None and self.token_id < 0:
            raise ValueError("token_id must be non-negative")


@dataclass(frozen=True)
class AllowlistRule:
    """Holder must appear in the named allowlist."""
    allowlist_id: str
    rule_type: ClassVar[RuleType] = RuleType.ALLOWLIST


@dataclass(frozen=True)
class HasScopeRule:
    """Credential must carry ``scope``."""
    scope: str
    rule_type: ClassVar[RuleType] = RuleType.HAS_SCOPE


Rule = Union[ERC20MinBalanceRule, ERC721OwnerRule, AllowlistRule, HasScopeRule]


@dataclass(frozen=True)
class Policy:
    """Named set of rules combined with ALL or ANY."""
    name: str
    rules: Tuple[Rule, ...]
    combination: Combination = Combination.ALL

    def __post_init__(self):
        object.__setattr__(self, "rules", tuple(self.rules))
        if not self.name:
            raise ValueError("policy name must not be empty")
        if not self.rules:
            raise ValueError(f"policy {self.name} has no rules")


@dataclass(frozen=True)
class RuleOutcome:
    """Result of evaluating one rule. ``error`` is set when the chain could not be read."""
    rule_type: RuleType
    allowed: bool
    error: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.rule_type.value,
            "allowed": self.allowed,
            "error": self.error,
            "detail": self.detail,
        }


@dataclass
class EvaluationContext:
    """Inputs shared by every rule of one policy evaluation."""
    subject: str
    chain_id: int
    chain_client: Any
    cache: Any
    allowlists: Any
    scopes: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PolicyDecision:
    """Combined result of a policy evaluation."""
    policy: str
    subject: str
    granted: bool
    outcomes: Tuple[RuleOutcome, ...]
    evaluation_time_ms: float

    @property
    def errors(self) -> List[str]:
        return [outcome.error for outcome in self.outcomes if outcome.error]


class EvaluateRequest(BaseModel):
    """Request model for policy evaluation."""
    model_config = ConfigDict(populate_by_name=True)

    policy: str = Field(..., min_length=1, description="Policy name")
    address: str = Field(..., description="Wallet address to evaluate")
    chain_id: int = Field(1, alias="chainId", description="Chain used by rules without their own chain")
    scopes: Sequence[str] = Field(default_factory=list, description="Credential scopes")


class EvaluateResponse(BaseModel):
    """Response model for policy evaluation."""
    policy: str
    address: str
    granted: bool
    outcomes: List[Dict[str, Any]] = Field(default_factory=list)
    evaluation_time_ms: float
