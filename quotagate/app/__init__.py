"""QuotaGate application package."""
