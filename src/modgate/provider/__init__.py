"""HTTP client for the remote moderation backend."""
