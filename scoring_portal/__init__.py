"""
Scoring Portal - Contest scoring harness

Responsibilities:
- Admission control (one job in flight per participant)
- Bounded worker pool running scoring jobs
- Functional benchmark of the participant's storefront
- Availability rating of the participant's cloud topology
- Result history and per-participant ranking
"""
