from .functional import (
    FunctionalSuite,
    FunctionalSuiteFailedError,
    FunctionalTestConfig,
    ScenarioResult,
    build_books,
)
from .identity import (
    DisposableIdentity,
    IdentityError,
    IdentityProvider,
    InMemoryIdentityProvider,
    disposable_identity,
)

__all__ = [
    "FunctionalSuite",
    "FunctionalSuiteFailedError",
    "FunctionalTestConfig",
    "ScenarioResult",
    "build_books",
    "DisposableIdentity",
    "IdentityError",
    "IdentityProvider",
    "InMemoryIdentityProvider",
    "disposable_identity",
]
