"""
Rules engine package.

Defines the token-gating rule model and the evaluation engine. Rules are
flat immutable records; evaluation is a table of plain async functions
keyed by rule type, and the engine combines their outcomes with ALL/ANY
logic, failing closed when the chain cannot be read.

Modules of interest:
- models: Rule variants, policies, outcomes and API models.
- evaluators: One evaluation function per rule type.
- engine: PolicyManager holding the policy table.
- loader: JSON policy document parsing and validation.
"""
