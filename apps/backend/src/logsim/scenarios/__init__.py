"""Scenario catalog and the runner owning active scenario instances."""
