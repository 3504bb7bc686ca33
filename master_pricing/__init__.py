"""Master Pricing Engine - Cloud Functions.

This package prices construction services (paver patios first) from
company-configurable base rates and adjustment tables.

Architecture:
- Two-tier engine: labor hours first, cost second
- Config store: per-company documents merged onto built-in templates
- Cache manager: coalesced loads, evicted on every successful save
- Broadcaster: in-process change events for live pricing sessions
- Two producers (manual form, text extraction) of one canonical selection
"""

__version__ = "1.0.0"
