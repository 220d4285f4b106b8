"""PingCaset rewards core: burn/recovery, group pools, leaderboard and bonus tasks."""
