"""
layered_di.decorating – decorator chaining for registered services

A DecoratingBuilder owns a single composed factory. Every call to
`add_decorator` wraps the current factory in a new one that first builds the
inner service and then hands it to the decorator, so `build` runs the base
factory first and the most recently added decorator last.

The `add_decorated*` helpers register `builder.build` with a
ServiceCollection as the factory of a service type and return the builder:

    services.add_decorated_singleton(IExampleService, ExampleService) \\
        .add_decorator(LoggingExampleService)

Nothing in the chain runs until the container resolves the service.
"""

import inspect
import logging
from functools import wraps
from typing import Any, Callable, Generic, Optional, TypeVar

from .exceptions import InvalidArgumentError, LifetimeOutOfRangeError
from .lifetime import Lifetime

logger = logging.getLogger(__name__)

TService = TypeVar('TService')


def _type_name(_type) -> str:
    return getattr(_type, '__name__', repr(_type))


def _required_positional_count(fn: Callable) -> Optional[int]:
    """
    Number of positional parameters `fn` must be called with, or None when
    that cannot be told (no readable signature, or *args).
    """
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return None

    count = 0
    for param in params:
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return None
        if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD) \
                and param.default is inspect.Parameter.empty:
            count += 1
    return count


def _ignoring_resolver(fn: Callable) -> Callable:
    """Adapt callable(*args) to callable(*args, resolver)."""
    @wraps(fn)
    def call_without_resolver(*args):
        return fn(*args[:-1])

    return call_without_resolver


def _check_implementation_type(implementation_type, dependency_type, argument: str) -> None:
    if not isinstance(implementation_type, type):
        raise InvalidArgumentError(f"{argument} must be a class, got {implementation_type!r}")
    if isinstance(dependency_type, type) and not getattr(dependency_type, '_is_protocol', False) \
            and not issubclass(implementation_type, dependency_type):
        raise InvalidArgumentError(
            f"'{implementation_type.__name__}' is not a subclass of '{dependency_type.__name__}'"
        )


class DecoratingBuilder(Generic[TService]):
    """
    Adds decorators to a registered service.

    Attributes:
        service_factory: callable(resolver) → service, the base factory with
                         every decorator added so far applied on top.
        dependency_type: the decorated service type, when known.
    """

    __slots__ = ('_service_factory', 'dependency_type')

    def __init__(
        self,
        service_factory: Callable[[Any], TService],
        dependency_type: Optional[type] = None
    ):
        if service_factory is None:
            raise InvalidArgumentError("service_factory must not be None")
        self._service_factory = service_factory
        self.dependency_type = dependency_type

    @property
    def service_factory(self) -> Callable[[Any], TService]:
        return self._service_factory

    def add_decorator(self, decorator_factory) -> 'DecoratingBuilder[TService]':
        """
        Wrap the service in another decorator.

        `decorator_factory` is one of:
          - callable(service, resolver) → service
          - callable(service) → service, the resolver is not passed
          - a decorator class, see `add_decorator_type`

        Returns this builder so calls can be chained.
        """
        if decorator_factory is None:
            raise InvalidArgumentError("decorator_factory must not be None")

        if isinstance(decorator_factory, type):
            return self.add_decorator_type(decorator_factory)

        if _required_positional_count(decorator_factory) == 1:
            return self._compose(_ignoring_resolver(decorator_factory))

        return self._compose(decorator_factory)

    def add_decorator_type(self, decorator_type: type) -> 'DecoratingBuilder[TService]':
        """
        Wrap the service in an instance of `decorator_type`, constructed by the
        resolver with the service to decorate as one of its constructor arguments.
        """
        if decorator_type is None:
            raise InvalidArgumentError("decorator_type must not be None")
        _check_implementation_type(decorator_type, self.dependency_type, 'decorator_type')

        def activate_decorator(service, resolver):
            return resolver.create_instance(decorator_type, service)

        return self._compose(activate_decorator)

    def _compose(self, decorator_factory: Callable[[TService, Any], TService]) -> 'DecoratingBuilder[TService]':
        service_factory = self._service_factory

        def decorated_factory(resolver):
            return decorator_factory(service_factory(resolver), resolver)

        self._service_factory = decorated_factory
        logger.debug(f"Added decorator {_type_name(decorator_factory)} to {_type_name(self.dependency_type)}")
        return self

    def build(self, resolver) -> TService:
        """
        Run the base factory and every decorator, in the order they were added.
        """
        return self._service_factory(resolver)


def add_decorated(
    services,
    dependency_type: type,
    service_factory: Callable,
    lifetime: str
) -> DecoratingBuilder:
    """
    Register `dependency_type` with a factory that can be decorated.

    `service_factory` is callable(resolver) → service or callable() → service.
    A class is constructed by the resolver, like `add_decorated_type`.
    """
    if services is None:
        raise InvalidArgumentError("services must not be None")
    if dependency_type is None:
        raise InvalidArgumentError("dependency_type must not be None")
    if service_factory is None:
        raise InvalidArgumentError("service_factory must not be None")
    if not Lifetime.is_defined(lifetime):
        raise LifetimeOutOfRangeError(f"Unknown lifetime: {lifetime}")

    if isinstance(service_factory, type):
        return add_decorated_type(services, dependency_type, service_factory, lifetime)

    if _required_positional_count(service_factory) == 0:
        service_factory = _ignoring_resolver(service_factory)

    builder = DecoratingBuilder(service_factory, dependency_type)
    services.add(dependency_type, factory=builder.build, lifetime=lifetime)
    return builder


def add_decorated_type(
    services,
    dependency_type: type,
    implementation_type: type,
    lifetime: str
) -> DecoratingBuilder:
    """
    Register `dependency_type`, built by the resolver as an `implementation_type`
    with its constructor dependencies resolved from their annotations.
    """
    if services is None:
        raise InvalidArgumentError("services must not be None")
    if dependency_type is None:
        raise InvalidArgumentError("dependency_type must not be None")
    if implementation_type is None:
        raise InvalidArgumentError("implementation_type must not be None")
    _check_implementation_type(implementation_type, dependency_type, 'implementation_type')

    def activate_implementation(resolver):
        return resolver.create_instance(implementation_type)

    return add_decorated(services, dependency_type, activate_implementation, lifetime)


def _add_decorated_with_lifetime(
    services,
    dependency_type: type,
    lifetime: str,
    implementation_type: Optional[type] = None,
    factory: Optional[Callable] = None,
    instance: Any = None
) -> DecoratingBuilder:
    given = [name for name, value in (
        ('implementation_type', implementation_type),
        ('factory', factory),
        ('instance', instance)
    ) if value is not None]
    if len(given) > 1:
        raise InvalidArgumentError(f"Only one of {', '.join(given)} can be given")

    if factory is not None:
        return add_decorated(services, dependency_type, factory, lifetime)

    if instance is not None:
        def existing_instance(_resolver):
            return instance

        return add_decorated(services, dependency_type, existing_instance, lifetime)

    return add_decorated_type(services, dependency_type, implementation_type or dependency_type, lifetime)


def add_decorated_singleton(
    services,
    dependency_type: type,
    implementation_type: Optional[type] = None,
    factory: Optional[Callable] = None,
    instance: Any = None
) -> DecoratingBuilder:
    """Register a decoratable singleton service."""
    return _add_decorated_with_lifetime(
        services, dependency_type, Lifetime.Singleton,
        implementation_type=implementation_type,
        factory=factory,
        instance=instance
    )


def add_decorated_scoped(
    services,
    dependency_type: type,
    implementation_type: Optional[type] = None,
    factory: Optional[Callable] = None
) -> DecoratingBuilder:
    """Register a decoratable scoped service."""
    return _add_decorated_with_lifetime(
        services, dependency_type, Lifetime.Scoped,
        implementation_type=implementation_type,
        factory=factory
    )


def add_decorated_transient(
    services,
    dependency_type: type,
    implementation_type: Optional[type] = None,
    factory: Optional[Callable] = None
) -> DecoratingBuilder:
    """Register a decoratable transient service."""
    return _add_decorated_with_lifetime(
        services, dependency_type, Lifetime.Transient,
        implementation_type=implementation_type,
        factory=factory
    )
