"""Storefront backend: orders, payments and the reward-points ledger."""
