"""
broadcasts — Tiered geo-broadcast alert pipeline.

    tiers, entitlements  → who may broadcast how far and how long
    alert_store          → alert lifecycle (create / update / deactivate)
    cross_post           → best-effort companion social post
    moderation           → support toggle, reports, auto-hide
    proximity            → audience lookup
    dispatcher           → batched push fan-out with audit record
    service              → facade used by the HTTP layer
"""
