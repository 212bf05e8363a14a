"""Violation rules: models, YAML loading and evaluation."""
