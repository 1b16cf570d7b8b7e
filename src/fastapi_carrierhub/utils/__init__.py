"""Small helpers shared by providers and domain records."""
