"""Safety layer — read-only enforcement for every outbound request."""
