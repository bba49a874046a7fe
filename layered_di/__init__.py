"""
layered_di – decorator chaining for a type-safe dependency injection container
"""

from .decorating import (
    DecoratingBuilder,
    add_decorated,
    add_decorated_type,
    add_decorated_singleton,
    add_decorated_scoped,
    add_decorated_transient
)
from .exceptions import (
    DependencyInjectionError,
    InvalidArgumentError,
    LifetimeOutOfRangeError,
    RegistrationNotFoundError,
    ScopeRequiredError,
    CyclicDependencyError,
    MissingAnnotationError
)
from .lifetime import Lifetime
from .services import (
    ServiceCollection,
    ServiceProvider,
    ServiceScope,
    ConstructorDependency,
    DependencyRegistration
)

__all__ = [
    'DecoratingBuilder',
    'add_decorated',
    'add_decorated_type',
    'add_decorated_singleton',
    'add_decorated_scoped',
    'add_decorated_transient',
    'DependencyInjectionError',
    'InvalidArgumentError',
    'LifetimeOutOfRangeError',
    'RegistrationNotFoundError',
    'ScopeRequiredError',
    'CyclicDependencyError',
    'MissingAnnotationError',
    'Lifetime',
    'ServiceCollection',
    'ServiceProvider',
    'ServiceScope',
    'ConstructorDependency',
    'DependencyRegistration'
]
