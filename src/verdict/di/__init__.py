from .analyzers import (
    DEFAULT_ANALYZERS,
    AmbiguousLifestylesAnalyzer,
    ContainerRegisteredCollectionAnalyzer,
    ContainerRegisteredComponentAnalyzer,
    DisposableTransientComponentAnalyzer,
    LifestyleMismatchAnalyzer,
    ShortCircuitedDependencyAnalyzer,
    TornLifestyleAnalyzer,
    run_analyzers,
)
from .container import (
    Container,
    ContainerOptions,
    ContainerState,
    DecoratorSpec,
    UnregisteredTypeEventArgs,
)
from .diagnostics import (
    ContainerAnalyzer,
    DiagnosticGroup,
    DiagnosticReport,
    DiagnosticResult,
    DiagnosticSeverity,
    DiagnosticType,
)
from .errors import (
    ActivationError,
    ContainerError,
    ContainerLockedError,
    CyclicDependencyError,
    DiagnosticVerificationError,
    VerificationError,
)
from .install import (
    Inject,
    ScopedLifestyleMiddleware,
    VerificationSettings,
    install_container,
    resolve_container,
)
from .lifestyles import (
    Lifestyle,
    Scope,
    ScopedLifestyle,
    SingletonLifestyle,
    TransientLifestyle,
    current_scope,
)
from .producers import CollectionProducer, InstanceProducer
from .registration import KnownRelationship, Registration
from .verification import (
    EagerBuildPipeline,
    VerificationOption,
    normalize_verification_option,
)

__all__ = [
    "DEFAULT_ANALYZERS",
    "ActivationError",
    "AmbiguousLifestylesAnalyzer",
    "CollectionProducer",
    "Container",
    "ContainerAnalyzer",
    "ContainerError",
    "ContainerLockedError",
    "ContainerOptions",
    "ContainerRegisteredCollectionAnalyzer",
    "ContainerRegisteredComponentAnalyzer",
    "ContainerState",
    "CyclicDependencyError",
    "DecoratorSpec",
    "DiagnosticGroup",
    "DiagnosticReport",
    "DiagnosticResult",
    "DiagnosticSeverity",
    "DiagnosticType",
    "DiagnosticVerificationError",
    "DisposableTransientComponentAnalyzer",
    "EagerBuildPipeline",
    "Inject",
    "InstanceProducer",
    "KnownRelationship",
    "Lifestyle",
    "LifestyleMismatchAnalyzer",
    "Registration",
    "Scope",
    "ScopedLifestyle",
    "ScopedLifestyleMiddleware",
    "ShortCircuitedDependencyAnalyzer",
    "SingletonLifestyle",
    "TornLifestyleAnalyzer",
    "TransientLifestyle",
    "UnregisteredTypeEventArgs",
    "VerificationError",
    "VerificationOption",
    "VerificationSettings",
    "current_scope",
    "install_container",
    "normalize_verification_option",
    "resolve_container",
    "run_analyzers",
]
