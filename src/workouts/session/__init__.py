"""Per-activity session state machine."""
