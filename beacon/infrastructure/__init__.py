# ==============================================================================
# Infrastructure Layer
# ==============================================================================
"""
Concrete adapters for the ports defined in beacon.base.

- cache: Valkey and in-memory key-value stores
- collectors: HTTP, JSONL file and in-memory delivery sinks
- assignment_store: durable experiment assignments
- consent: tracking consent flag
"""
