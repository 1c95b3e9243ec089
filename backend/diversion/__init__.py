"""Take-home medication diversion-control service."""
