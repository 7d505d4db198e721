"""Fanout — subscription indexing and event delivery for long-lived connections.

Published events are matched against the subscriptions each live connection
registered, filtered per subscription, and pushed over a transport that may
drop a client at any moment.
"""

__version__ = "0.1.0"
