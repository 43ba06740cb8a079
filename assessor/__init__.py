"""Assessor: rubric-driven startup evaluation for bank reviewers."""
