"""Restaurant ordering and back-office API."""
