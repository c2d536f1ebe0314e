"""HTTP surface for the regatta scoring service."""
