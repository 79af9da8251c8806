"""
Pixie — a single-operator personal assistant.

Pixie binds a Telegram chat to Claude sessions: one primary session the
operator talks to, plus any number of delegated sessions the primary session
spins up for sub-tasks. Usage is billed per model multiplier and every request
is written to an append-only ledger. The process can restart itself after it
edits its own source tree.
"""

__version__ = "0.1.0"
