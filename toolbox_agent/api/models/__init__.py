"""API request, response and context models."""
