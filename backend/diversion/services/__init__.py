"""Domain services for the take-home diversion workflow."""
