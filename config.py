"""
Local configuration for the earnings and leaderboard service.

Keep credentials out of version control; environment variables
(``INFLUX_URL``, ``INFLUX_TOKEN``, ``INFLUX_ORG``, ``INFLUX_BUCKET``) override
the Influx values below.
"""

# Virtual wallet handed to every new user; lifetime profit is measured against it.
INITIAL_ENDOWMENT = 100000.0

# Write-back cadence for the in-memory earnings cache (seconds).
EARNINGS_FLUSH_INTERVAL = 14 * 60

# Rows returned by the leaderboard before smart truncation.
LEADERBOARD_SIZE = 20

# Upper bound for a single price lookup before falling back to average cost (seconds).
PRICE_LOOKUP_TIMEOUT = 2.0

# "memory" keeps aggregates in-process; "influx" persists them to InfluxDB.
EARNINGS_STORE = "memory"

INFLUX_URL = "http://localhost:8086"
INFLUX_ORG = "stocksim"
INFLUX_BUCKET = "earnings"
INFLUX_TOKEN = "REPLACE_WITH_INFLUX_TOKEN"
INFLUX_TIMEOUT_MS = 10000

# External collaborators. Leave empty to use in-memory stand-ins.
PRICE_ORACLE_URL = ""
ORDERS_SERVICE_URL = ""
