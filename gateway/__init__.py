"""
Room Gateway - HTTP facade over the on-chain room program

Responsibilities:
- Derive registry and room addresses
- Translate room operations into ledger transitions
- Retry throttled, unconfirmed and conflicting submissions
- Project ledger account state into JSON
- Announce lifecycle events on Redis
"""
