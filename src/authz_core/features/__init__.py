"""Feature packages for the authorization oracle."""
