"""appctl - privileged control of installed Android applications.

Two privilege transports (a persistent root shell and an out-of-process
helper service), a command policy every command must pass, best-effort batch
orchestration, and snapshot-based rollback with a bounded action log.
"""

__version__ = "0.1.0"
