"""
TinyChat - a conversational assistant core.

Branching, forkable chats persisted as linked message chains, streamed
replies from pluggable model services, and long-term memories picked by
embedding relevance.
"""

__version__ = "0.1.0"
