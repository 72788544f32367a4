"""
Exception types raised by apache2buddy.

Every error the tool raises on purpose derives from Apache2BuddyError so
the command line front end can report it in one place.
"""


class Apache2BuddyError(Exception):
    """Base exception for Apache2Buddy errors"""
    pass


class InsufficientDataError(Apache2BuddyError):
    """No usable worker memory readings to size the worker limit from"""
    pass


class ConfigurationError(Apache2BuddyError):
    """The Apache configuration file could not be located or read"""
    pass


class StatusUnavailableError(Apache2BuddyError):
    """mod_status could not be reached or returned no worker data"""
    pass


class MemoryDiscoveryError(Apache2BuddyError):
    """System memory could not be determined"""
    pass
