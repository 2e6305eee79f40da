"""
Session lifecycle logic used by the study runtime.

- state_machine: SessionStateMachine enforcing lifecycle and validation rules
- statistics: inclusion rules and aggregate counts for reporting
"""
