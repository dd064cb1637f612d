"""
Reports module.

- metrics: pure aggregation over fetched rows
- charts: Altair/Vega-Lite chart builders
- service: report data access (errors → empty result)
- admin: performance table + CSV export, top-10 sales chart
"""
