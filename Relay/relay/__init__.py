"""
Relay - BasalMind Chat Relay

Philosophy: Bind, don't guess. Reply, don't converse.

Relay receives chat-platform activities, interprets a small fixed command
vocabulary and keeps each conversation bound to the server id that routes
CI/CD webhooks back into it.
"""

__version__ = "1.0.0"
__entity__ = "Relay"
