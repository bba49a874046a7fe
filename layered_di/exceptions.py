"""
Errors raised by layered_di itself.

Exceptions raised by user factories, decorators and constructors are never
wrapped; they reach the caller of `resolve` unchanged.
"""


class DependencyInjectionError(Exception):
    """Base class for every error raised by the container or the builders."""


class InvalidArgumentError(DependencyInjectionError, ValueError):
    """A required argument was None or not of the expected kind."""


class LifetimeOutOfRangeError(InvalidArgumentError):
    """A lifetime outside of Lifetime.Singleton / Scoped / Transient."""


class RegistrationNotFoundError(DependencyInjectionError):
    pass


class ScopeRequiredError(DependencyInjectionError):
    pass


class CyclicDependencyError(DependencyInjectionError):
    pass


class MissingAnnotationError(DependencyInjectionError):
    pass
