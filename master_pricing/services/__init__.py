"""Pricing services: engine, config store, cache, broadcaster and entry paths."""
