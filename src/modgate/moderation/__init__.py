"""
Moderation pipeline for modgate.

This package turns content into verdicts:

- **policy_loader.py**: Parses and validates YAML policies into a registry
- **policy_engine.py**: Maps provider scores to a decision under a policy,
  including timeout fallbacks
- **aggregator.py**: Combines per-item decisions into one verdict
- **check_scheduler.py**: Debounce/supersede controller for one content stream
- **moderation_service.py**: Entry point composing all of the above with the
  rate limiter, tenant config cache, remote client and frame sampler
- **moderation_errors.py**: Exception hierarchy
"""
