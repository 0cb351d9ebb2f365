"""
modgate - Moderation orchestration for chat and media content

modgate sits between the places content is produced (a chat server, an upload
form) and a remote moderation backend that scores content per category. It
decides when to check, applies per-tenant policies to the returned scores and
combines multi-item submissions into one verdict.

Core Components:

- **Check Scheduler**: Debounces a stream of inputs and guarantees that only
  the latest one delivers a result
- **Rate Limiter**: Sliding-window cap on checks per tenant
- **Config Cache**: TTL cache of per-tenant settings in front of SQLite
- **Policy Decision Engine**: Maps category scores to block/flag/warn/allow
  with inclusive thresholds and priority tie-breaking
- **Multi-Item Aggregator**: Most-severe-wins combination of item decisions
- **Video Frame Sampler**: Evenly spaced frame extraction for video checks
- **Discord integration**: A py-cord cog moderating guild messages

Usage:
    from modgate.main import main
    main()  # Starts the Discord bot
"""
