class Lifetime:
    """
    Supported lifetimes for registered dependencies.

    Lifetimes are plain string tags, so anything handed to a registration
    call is checked with `Lifetime.is_defined` before it is stored.
    """
    Singleton = 'singleton'
    Transient = 'transient'
    Scoped = 'scoped'

    @classmethod
    def values(cls) -> tuple[str, ...]:
        return (cls.Singleton, cls.Scoped, cls.Transient)

    @classmethod
    def is_defined(cls, value) -> bool:
        return isinstance(value, str) and value in cls.values()
