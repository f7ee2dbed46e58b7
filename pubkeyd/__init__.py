"""pubkeyd — serves GitHub SSH public keys for OneLogin users and roles.

Core components:
  - directory.DirectorySnapshot   immutable identity → alias / role → members view
  - directory.RefreshCoordinator  owns and refreshes the published snapshot
  - keys.KeyCache                 single-flight TTL cache of GitHub key text
  - resolver.Resolver             identity / role resolution against a snapshot
"""

__version__ = "1.0.0"
