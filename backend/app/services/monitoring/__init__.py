"""
Proof Monitoring Jobs

Out-of-band batch passes over persisted state and audit history.
- ProofConsistencyChecker: status / attachment divergence
- FailureRateMonitor: rolling attachment success rate
"""

from .consistency_checker import ProofConsistencyChecker
from .failure_rate_monitor import FailureRateMonitor

__all__ = [
    'ProofConsistencyChecker',
    'FailureRateMonitor',
]
