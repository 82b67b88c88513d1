"""Live metric aggregation and post-session finalize.

Modules:
    join       — FanInJoin counted join over a fixed set of keys
    splits     — Per-kilometre splits and elevation accumulation
    aggregator — SessionAggregator (live snapshots + fan-out/fan-in finalize)
"""
