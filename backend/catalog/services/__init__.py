"""Catalog pricing, rules, hygiene and activation services."""
