# tabcast/errors.py
class TabcastError(Exception):
    pass

class LaunchError(TabcastError):
    pass

class ProbeTimeoutError(LaunchError):
    """Endpoint never satisfied the readiness predicate within the attempt budget."""

class ProcessExitedError(LaunchError):
    """Monitored process died before its endpoint became ready."""

class PortConflictError(LaunchError):
    pass

class NoPagesError(TabcastError):
    pass

class ProtocolError(TabcastError):
    pass

class SessionNotFoundError(TabcastError):
    pass
