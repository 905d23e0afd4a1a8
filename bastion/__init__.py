"""Request-time security mitigation engine."""
