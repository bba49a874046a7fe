"""
layered_di.services – the container decorated services are registered into

Provides:
- Type-hinted constructor injection
- Singleton, Transient, and Scoped lifetimes
- Ordered registrations, the last registration for a type wins
- Ad-hoc activation of unregistered types (used for decorator classes)
"""

import inspect
import logging
import types
from functools import lru_cache
from threading import RLock
from typing import Any, Callable, Iterator, Optional, Union, get_args, get_origin

from .decorating import (
    DecoratingBuilder,
    add_decorated,
    add_decorated_scoped,
    add_decorated_singleton,
    add_decorated_transient,
    add_decorated_type
)
from .exceptions import (
    CyclicDependencyError,
    InvalidArgumentError,
    LifetimeOutOfRangeError,
    MissingAnnotationError,
    RegistrationNotFoundError,
    ScopeRequiredError
)
from .lifetime import Lifetime

logger = logging.getLogger(__name__)

_MISSING = object()

_UNION_TYPES = tuple(t for t in (Union, getattr(types, "UnionType", None)) if t is not None)


@lru_cache(maxsize=None)
def get_signature(fn):
    return inspect.signature(fn)


class ConstructorDependency:
    """
    Represents a single constructor parameter dependency.

    Attributes:
        name:            Name of the parameter in the constructor.
        dependency_type: The type annotation required.
        has_default:     Whether the parameter can be left to its default.
    """

    __slots__ = ("name", "dependency_type", "has_default")

    def __init__(self, name: str, _type: type, has_default: bool = False):
        self.name = name
        self.dependency_type = _type
        self.has_default = has_default


def get_type_dependencies(_type: type) -> list[ConstructorDependency]:
    """
    Inspect the __init__ signature of `_type` to discover constructor dependencies.
    """
    deps = []
    for name, param in get_signature(_type).parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        has_default = param.default is not inspect.Parameter.empty
        if param.annotation is inspect.Parameter.empty:
            if has_default:
                continue
            raise MissingAnnotationError(
                f"Missing type annotation for parameter '{name}' in {_type.__name__}"
            )
        deps.append(ConstructorDependency(name=name, _type=param.annotation, has_default=has_default))
    return deps


def _candidate_types(annotation) -> tuple:
    """Members of an Optional/Union annotation, without NoneType; the annotation itself otherwise."""
    if get_origin(annotation) in _UNION_TYPES:
        return tuple(arg for arg in get_args(annotation) if arg is not type(None))
    return (annotation,)


def _accepts(annotation, value) -> bool:
    for candidate in _candidate_types(annotation):
        if not isinstance(candidate, type):
            continue
        # isinstance() raises on protocols that are not @runtime_checkable
        if getattr(candidate, '_is_protocol', False) and not getattr(candidate, '_is_runtime_protocol', False):
            return True
        if isinstance(value, candidate):
            return True
    return False


def _registered_key(resolver, annotation):
    """The annotation, or the first Optional/Union member, that `resolver` has a registration for."""
    if resolver.is_registered(annotation):
        return annotation
    for candidate in _candidate_types(annotation):
        if resolver.is_registered(candidate):
            return candidate
    return None


def _is_optional(annotation) -> bool:
    return get_origin(annotation) in _UNION_TYPES and type(None) in get_args(annotation)


def _resolve_annotation(resolver, param: ConstructorDependency) -> Any:
    key = _registered_key(resolver, param.dependency_type)
    if key is not None:
        return resolver.resolve(key)
    if param.has_default:
        return _MISSING
    if _is_optional(param.dependency_type):
        return None
    return resolver.resolve(param.dependency_type)


def activate(
    resolver,
    implementation_type: type,
    constructor_params: list[ConstructorDependency],
    parameters: tuple = ()
) -> Any:
    """
    Construct `implementation_type`, taking each constructor argument from
    `parameters` when one is an instance of the annotated type and from
    `resolver` otherwise.

    Optional[X] and Union annotations match and resolve through their
    members. A protocol that is not runtime checkable accepts the first
    remaining supplied argument. String (forward reference) annotations are
    not evaluated, so they never match a supplied argument.
    """
    supplied = list(parameters)
    kwargs = {}
    for param in constructor_params:
        match = _MISSING
        for index, value in enumerate(supplied):
            if _accepts(param.dependency_type, value):
                match = supplied.pop(index)
                break
        if match is _MISSING:
            match = _resolve_annotation(resolver, param)
        if match is not _MISSING:
            kwargs[param.name] = match

    if supplied:
        unused = ', '.join(type(value).__name__ for value in supplied)
        raise InvalidArgumentError(
            f"No constructor parameter of '{implementation_type.__name__}' accepts: {unused}"
        )
    return implementation_type(**kwargs)


class DependencyRegistration:
    """
    Holds metadata and factory logic for a single registered service.

    Attributes:
        dependency_type:     The abstract/base type.
        implementation_type: The concrete class to instantiate.
        lifetime:            Lifetime.Singleton, Transient, or Scoped.
        instance:            Pre-built instance for singletons.
        factory:             Optional callable(resolver) → instance.
        constructor_params:  List of ConstructorDependency for auto-injection.
    """
    __slots__ = (
        "dependency_type", "implementation_type", "lifetime", "instance", "factory",
        "constructor_params", "_type_name"
    )

    def __init__(
        self,
        dependency_type: type,
        lifetime: str,
        implementation_type: Optional[type] = None,
        instance: Any = None,
        factory: Optional[Callable[[Any], Any]] = None,
        constructor_params: Optional[list[ConstructorDependency]] = None
    ):
        self.dependency_type = dependency_type
        self.lifetime = lifetime
        self.implementation_type = implementation_type or dependency_type
        self.instance = instance
        self.factory = factory
        self.constructor_params = constructor_params or []
        self._type_name = getattr(self.implementation_type, '__name__', repr(self.implementation_type))

    def activate(self, resolver) -> Any:
        """
        Create a new instance from the factory, the stored instance or the constructor.
        """
        if self.factory is not None:
            return self.factory(resolver)
        if self.instance is not None:
            return self.instance
        return activate(resolver, self.implementation_type, self.constructor_params)


class ServiceCollection:
    """
    Collects service registrations before building a ServiceProvider.
    """

    __slots__ = ("_registrations",)

    def __init__(self):
        self._registrations: list[DependencyRegistration] = []

    def __len__(self) -> int:
        return len(self._registrations)

    def __iter__(self) -> Iterator[DependencyRegistration]:
        return iter(self._registrations)

    def add(
        self,
        dependency_type: type,
        implementation_type: Optional[type] = None,
        **kwargs
    ) -> None:
        """
        Shorthand to register a service (default: Transient).
        """
        kwargs.setdefault('lifetime', Lifetime.Transient)
        self._register_dependency(dependency_type, implementation_type, **kwargs)

    def add_singleton(
        self,
        dependency_type: type,
        implementation_type: Optional[type] = None,
        instance: Any = None,
        factory: Optional[Callable] = None
    ) -> None:
        """Register a singleton service."""
        self._register_dependency(
            dependency_type=dependency_type,
            implementation_type=implementation_type,
            lifetime=Lifetime.Singleton,
            instance=instance,
            factory=factory
        )

    def add_transient(
        self,
        dependency_type: type,
        implementation_type: Optional[type] = None,
        factory: Optional[Callable] = None
    ) -> None:
        """Register a transient service."""
        self._register_dependency(
            dependency_type=dependency_type,
            implementation_type=implementation_type,
            lifetime=Lifetime.Transient,
            factory=factory
        )

    def add_scoped(
        self,
        dependency_type: type,
        implementation_type: Optional[type] = None,
        factory: Optional[Callable] = None
    ) -> None:
        """Register a scoped service."""
        self._register_dependency(
            dependency_type=dependency_type,
            implementation_type=implementation_type,
            lifetime=Lifetime.Scoped,
            factory=factory
        )

    def register_many(self, types: list[type], lifetime: str = Lifetime.Transient) -> None:
        """
        Bulk-register multiple types with the same lifetime.
        """
        if not Lifetime.is_defined(lifetime):
            raise LifetimeOutOfRangeError(f"Unknown lifetime: {lifetime}")
        for t in types:
            self._register_dependency(t, None, lifetime=lifetime)

    # Decorated registrations, see layered_di.decorating

    def add_decorated(self, dependency_type: type, service_factory: Callable, lifetime: str) -> DecoratingBuilder:
        return add_decorated(self, dependency_type, service_factory, lifetime)

    def add_decorated_type(self, dependency_type: type, implementation_type: type, lifetime: str) -> DecoratingBuilder:
        return add_decorated_type(self, dependency_type, implementation_type, lifetime)

    def add_decorated_singleton(self, dependency_type: type, implementation_type=None, factory=None,
                                instance=None) -> DecoratingBuilder:
        return add_decorated_singleton(
            self, dependency_type, implementation_type=implementation_type, factory=factory, instance=instance)

    def add_decorated_scoped(self, dependency_type: type, implementation_type=None, factory=None) -> DecoratingBuilder:
        return add_decorated_scoped(self, dependency_type, implementation_type=implementation_type, factory=factory)

    def add_decorated_transient(self, dependency_type: type, implementation_type=None,
                                factory=None) -> DecoratingBuilder:
        return add_decorated_transient(self, dependency_type, implementation_type=implementation_type, factory=factory)

    def _register_dependency(
        self,
        dependency_type: type,
        implementation_type: Optional[type],
        **kwargs
    ) -> None:
        """
        Internal helper to create and append a DependencyRegistration.
        """
        if dependency_type is None:
            raise InvalidArgumentError("dependency_type must not be None")
        lifetime = kwargs.get('lifetime')
        if not Lifetime.is_defined(lifetime):
            raise LifetimeOutOfRangeError(f"Unknown lifetime: {lifetime}")

        impl = implementation_type or dependency_type
        auto_wired = kwargs.get('factory') is None and kwargs.get('instance') is None
        constructor_params = get_type_dependencies(impl) if auto_wired else []

        reg = DependencyRegistration(
            dependency_type=dependency_type,
            implementation_type=impl,
            constructor_params=constructor_params,
            **kwargs
        )
        self.add_registration(reg)

    def add_registration(self, registration: DependencyRegistration) -> None:
        """
        Append a prebuilt DependencyRegistration.
        """
        if registration is None:
            raise InvalidArgumentError("registration must not be None")
        if registration.dependency_type is None:
            raise InvalidArgumentError("dependency_type must not be None")
        if not Lifetime.is_defined(registration.lifetime):
            raise LifetimeOutOfRangeError(f"Unknown lifetime: {registration.lifetime}")

        self._registrations.append(registration)
        logger.debug(f"Registered {registration._type_name} as "
                     f"{getattr(registration.dependency_type, '__name__', registration.dependency_type)} "
                     f"({registration.lifetime})")

    def get_container(self) -> dict[type, DependencyRegistration]:
        """Effective registration per type, later registrations override earlier ones."""
        return {reg.dependency_type: reg for reg in self._registrations}

    def build_provider(self) -> 'ServiceProvider':
        """
        Finalize registrations and return a built ServiceProvider.
        """
        provider = ServiceProvider(self)
        provider.build()
        return provider


class ServiceProvider:
    """
    Resolves and caches instances according to registration metadata.

    The provider takes a snapshot of the collection; registrations added to
    the collection afterwards are not visible to it.

    Key methods:
      - resolve(type)          → instance
      - create_instance(type)  → instance of an unregistered type
      - build()                → pre-instantiate singletons
      - create_scope()         → new ServiceScope for scoped lifetimes
    """

    __slots__ = (
        '_dependency_lookup', '_dependencies', '_singleton_instances',
        '_cache_lock'
    )

    def __init__(self, service_collection: ServiceCollection):
        self._dependency_lookup = service_collection.get_container()
        self._dependencies = list(self._dependency_lookup.values())
        self._singleton_instances: dict[type, Any] = {}
        # Reentrant: a singleton factory may resolve other singletons.
        self._cache_lock = RLock()

    def is_registered(self, _type: type) -> bool:
        return _type in self._dependency_lookup

    def resolve(self, _type: type) -> Any:
        """
        Resolve a registered service.
        """
        reg = self._get_registered_dependency(_type)
        lifetime = reg.lifetime

        if lifetime == Lifetime.Singleton:
            return self._resolve_singleton(_type, reg)

        elif lifetime == Lifetime.Transient:
            return reg.activate(self)

        elif lifetime == Lifetime.Scoped:
            raise ScopeRequiredError("Scoped resolution requires a scope. Call provider.create_scope().")

        raise LifetimeOutOfRangeError(f"Unknown lifetime: {lifetime}")

    def create_instance(self, implementation_type: type, *parameters) -> Any:
        """
        Construct a type that need not be registered, wiring its constructor
        from `parameters` first and from this provider second.
        """
        return activate(self, implementation_type, get_type_dependencies(implementation_type), parameters)

    def _resolve_singleton(self, _type: type, reg: DependencyRegistration) -> Any:
        cache = self._singleton_instances

        instance = cache.get(_type, _MISSING)
        if instance is not _MISSING:
            return instance

        with self._cache_lock:
            instance = cache.get(_type, _MISSING)
            if instance is not _MISSING:
                return instance

            instance = reg.activate(self)
            cache[_type] = instance
            return instance

    def _get_registered_dependency(
        self,
        _type: type,
        requesting_type: Optional[DependencyRegistration] = None
    ) -> DependencyRegistration:
        """
        Lookup registration or error out, optionally showing context.
        """
        reg = self._dependency_lookup.get(_type)
        if reg:
            return reg
        name = getattr(_type, '__name__', repr(_type))
        if requesting_type:
            raise RegistrationNotFoundError(
                f"Failed to locate registration for '{name}' "
                f"while instantiating '{requesting_type._type_name}'"
            )
        raise RegistrationNotFoundError(f"Failed to locate registration for '{name}'")

    def _topological_sort(self, dependencies: list[DependencyRegistration]) -> list[DependencyRegistration]:
        """
        Perform DFS-based topological sort to detect cycles and order singletons.
        """
        visited = set()
        visiting = set()
        order: list[DependencyRegistration] = []

        def dfs(dep: DependencyRegistration):
            if dep in visited:
                return
            if dep in visiting:
                raise CyclicDependencyError(f"Cyclic dependency detected: {dep._type_name}")
            visiting.add(dep)
            for param in dep.constructor_params:
                key = _registered_key(self, param.dependency_type)
                if key is None and (param.has_default or _is_optional(param.dependency_type)):
                    continue
                dfs(self._get_registered_dependency(key or param.dependency_type, dep))
            visiting.remove(dep)
            visited.add(dep)
            order.append(dep)

        for d in dependencies:
            dfs(d)
        return order

    def build(self) -> 'ServiceProvider':
        """
        Instantiate all singletons in dependency order.
        """
        to_build = [d for d in self._dependencies if d.lifetime == Lifetime.Singleton]
        for reg in self._topological_sort(to_build):
            self._resolve_singleton(reg.dependency_type, reg)
        logger.debug(f"Built provider with {len(self._dependencies)} registrations")
        return self

    def create_scope(self) -> 'ServiceScope':
        """Begin a new scoped lifetime context."""
        return ServiceScope(self)


class ServiceScope:
    """
    Provides scoped resolution: Singleton → cascades to provider, Transient → new each call,
    Scoped → one per scope instance.
    """

    __slots__ = ('_provider', '_scoped_instances', '_cache_lock')

    def __init__(self, provider: ServiceProvider):
        self._provider = provider
        self._scoped_instances: dict[type, Any] = {}
        self._cache_lock = RLock()

    def __enter__(self) -> 'ServiceScope':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.dispose()

    def is_registered(self, _type: type) -> bool:
        return self._provider.is_registered(_type)

    def resolve(self, _type: type) -> Any:
        provider = self._provider
        reg = provider._get_registered_dependency(_type)
        life = reg.lifetime

        # Singleton always via root provider
        if life == Lifetime.Singleton:
            return provider.resolve(_type)

        if life == Lifetime.Transient:
            return reg.activate(self)

        if life != Lifetime.Scoped:
            raise LifetimeOutOfRangeError(f"Unknown lifetime: {life}")

        insts = self._scoped_instances
        inst = insts.get(_type, _MISSING)
        if inst is not _MISSING:
            return inst

        with self._cache_lock:
            inst = insts.get(_type, _MISSING)
            if inst is _MISSING:
                inst = reg.activate(self)
                insts[_type] = inst
            return inst

    def create_instance(self, implementation_type: type, *parameters) -> Any:
        return activate(self, implementation_type, get_type_dependencies(implementation_type), parameters)

    def dispose(self) -> None:
        """
        Call dispose on disposable scoped instances, then clear them.
        """
        for instance in self._scoped_instances.values():
            if hasattr(instance, 'dispose') and callable(getattr(instance, 'dispose')):
                try:
                    instance.dispose()
                except Exception as e:
                    logger.warning(f"Error disposing scoped instance: {e}")

        self._scoped_instances.clear()
