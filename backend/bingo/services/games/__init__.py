"""Game domain services: board, win patterns, the session state machine
and the session store.

HTTP routes and socket handlers go through these modules, keeping transport
concerns separated from core game mechanics.
"""
