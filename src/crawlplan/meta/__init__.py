"""Adaptive plan arbitration (meta-planning).

Components:
  - risk:           Pure risk metrics for a plan
  - validator:      Structural + safety validation, sanitized blueprint
  - effectiveness:  Append-only preview/execution feedback store
  - evaluator:      Multi-signal plan scoring
  - fusion:         Safety-first merge of microprolog seed + alternatives
  - decision_log:   Best-effort audit sinks
  - arbitrator:     Ordered, threshold-driven decision state machine
  - experiments:    Out-of-band threshold comparisons
  - replay:         Dry-run estimate of the chosen plan
  - coordinator:    process() orchestration
  - policy:         YAML policy loading and typed policy sections
"""
