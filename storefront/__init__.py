"""Storefront checkout core: session consistency and payment reconciliation."""
