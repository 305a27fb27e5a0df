"""Exports: CSV writers and Markdown reports.

- writers.py: CSV emitters for the monthly trend, scenario lists and comparisons
- reports.py: scenario.md summary for a single scenario
"""
