"""
Kissmint Backend

Prize settlement service for the Kissmint tap game mini-app:
- Live daily/weekly leaderboards and prize pools in Redis
- Scheduled prize settlement with on-chain payouts
- Durable audit trail of every distribution attempt
- REST API for pools, distributions and score submission
"""

__version__ = "0.1.0"
__author__ = "Kissmint Team"
