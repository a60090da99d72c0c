"""
Monetization core

Decides feature access per subscription plan and meters per-user quota:
- mapping: feature -> action -> usage field tables
- policy: plan gate + quota gate decisions
- pipeline: auth, policy, handler, post-success charge
- container: service wiring for the app
"""
