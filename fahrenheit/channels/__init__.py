"""Channel identifiers, adapter protocol and adapter registry.

Adapters for concrete providers live outside this package and are
registered with a ChannelRegistry at startup.
"""
