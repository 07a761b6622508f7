"""HTTP surface for the fire detector."""
