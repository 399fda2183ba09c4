"""Service layer for scamreg: intake, aggregation, lifecycle, moderation, and search."""
