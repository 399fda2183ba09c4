"""scamreg: a community registry of reported scam identifiers.

This package contains the core of the registry: identifier normalization,
report intake, entity aggregation, the report status state machine, the
moderation queue, and ranked search over reports and entities.
"""
