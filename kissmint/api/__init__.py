"""HTTP API for prize pools, distributions, revenue and leaderboards."""
